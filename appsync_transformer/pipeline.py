"""
Schema-to-assets pipeline.

``compile_api`` runs every stage that does not need the CDK runtime:

    validate environment -> normalize schema -> adapt auth -> parse slots
    -> transform -> materialize assets

and returns the parameters the template include needs. The environment tag
is checked before anything touches the working directory.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import structlog

from .asset_materializer import StackAssets, materialize_assets
from .authorization_modes import AuthConversionResult, AuthorizationMode, AuthorizationType, convert_authorization_modes
from .config import resolve_transform_parameters, validate_environment_name
from .conflict_resolution import ConflictResolution, convert_to_resolver_config
from .orchestrator import API_KEY_EXPIRATION_PARAMETER, API_NAME_PARAMETER, ENV_PARAMETER, execute_transform
from .resource_graph import ResourceGraph
from .schema_normalizer import NormalizedSchema, SchemaInput, normalize_schema
from .transformers import TransformerPlugin
from .types import FunctionSlot
from .user_defined_slots import function_slots_to_mapping, parse_user_defined_slots

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86400

FunctionSlots = Union[Mapping[str, str], Sequence[FunctionSlot]]


@dataclass
class CompiledApi:
    schema: NormalizedSchema
    auth: AuthConversionResult
    graph: ResourceGraph
    assets: StackAssets
    environment_name: str
    include_parameters: Dict[str, Any] = field(default_factory=dict)


def api_key_expiration_epoch(expires_days: int, now: Optional[float] = None) -> int:
    """Expiry of the API key, counted from the start of the current UTC day.

    Synthesizing twice on the same day yields the same value. The result is
    never less than one day from ``now``.
    """
    if now is None:
        now = time.time()
    start_of_day = int(now) // SECONDS_PER_DAY * SECONDS_PER_DAY
    return max(start_of_day + expires_days * SECONDS_PER_DAY, int(now) + SECONDS_PER_DAY)


def compile_api(
    definition: SchemaInput,
    authorization_modes: Sequence[AuthorizationMode],
    output_directory: Union[str, Path],
    api_name: str,
    environment_name: Optional[str] = None,
    bucket_name: str = "",
    root_key: str = "",
    stack_mappings: Optional[Mapping[str, str]] = None,
    function_slots: FunctionSlots = (),
    conflict_resolution: Optional[ConflictResolution] = None,
    transform_parameters: Optional[Mapping[str, Any]] = None,
    custom_transformers: Sequence[TransformerPlugin] = (),
    now: Optional[float] = None,
) -> CompiledApi:
    """Compile a schema into materialized assets and include parameters.

    Args:
        definition: Schema text, a schema file path, or a sequence of either
        authorization_modes: Ordered authorization modes for the API
        output_directory: Working directory for generated assets
        api_name: Value of the ``AppSyncApiName`` parameter
        environment_name: Deployment environment tag, at most 8 characters
        bucket_name: Asset bucket passed as ``S3DeploymentBucket``
        root_key: Asset root key passed as ``S3DeploymentRootKey``
        stack_mappings: Logical id to stack name overrides
        function_slots: User-defined slot code, keyed or as FunctionSlots
        conflict_resolution: Conflict-resolution policy for @model types
        transform_parameters: Overrides for the default transform parameters
        custom_transformers: Plugins run after the built-in transformers
        now: Clock override for the API key expiry, in epoch seconds

    Raises:
        AppSyncTransformerError: From whichever stage fails; no later stage runs
    """
    environment = validate_environment_name(environment_name)
    parameters = resolve_transform_parameters(transform_parameters)

    schema = normalize_schema(
        definition,
        extra_directive_definitions=[
            plugin.directive_definitions for plugin in custom_transformers if plugin.directive_definitions
        ],
    )
    auth = convert_authorization_modes(authorization_modes, requires_auth=schema.has_auth_directives)

    if not isinstance(function_slots, Mapping):
        function_slots = function_slots_to_mapping(function_slots)
    user_slots = parse_user_defined_slots(function_slots)
    resolver_config = convert_to_resolver_config(conflict_resolution) if conflict_resolution else None
    logger.info(
        "transform_inputs_ready",
        models=len(schema.models),
        providers=[provider.authentication_type.value for provider in auth.auth_config.providers],
        user_slots=len(user_slots),
        env=environment,
    )

    graph = execute_transform(
        schema,
        user_slots,
        auth.auth_config,
        stack_mapping=stack_mappings,
        resolver_config=resolver_config,
        transform_parameters=parameters,
        admin_roles=auth.admin_roles,
        identity_pool_id=auth.identity_pool_id,
        custom_transformers=custom_transformers,
    )
    assets = materialize_assets(graph, output_directory, bucket_name, root_key)

    values: Dict[str, Any] = {API_NAME_PARAMETER: api_name, ENV_PARAMETER: environment}
    values.update(assets.parameters)
    values.update(auth.cfn_include_parameters)
    api_key = auth.auth_config.get_provider(AuthorizationType.API_KEY)
    if api_key is not None:
        values[API_KEY_EXPIRATION_PARAMETER] = str(
            api_key_expiration_epoch(api_key.api_key_expiration_days, now)
        )
    declared = graph.root_stack["Parameters"]

    return CompiledApi(
        schema=schema,
        auth=auth,
        graph=graph,
        assets=assets,
        environment_name=environment,
        include_parameters={name: value for name, value in values.items() if name in declared},
    )
