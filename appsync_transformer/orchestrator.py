"""
Transform orchestration.

Runs the transformer plugins over a normalized schema and returns the
resulting ``ResourceGraph``. The orchestrator owns the API-level resources
(the GraphQL API, its schema, the default API key and the root parameters),
hands the builder to each plugin in turn, splices user-defined slots in after
every plugin has run, and wraps any failure in a ``TransformError`` naming
the component that raised it.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from .authorization_modes import (
    AUTH_ROLE_NAME_PARAMETER,
    LAMBDA_AUTHORIZER_ARN_PARAMETER,
    UNAUTH_ROLE_NAME_PARAMETER,
    USER_POOL_ID_PARAMETER,
    AuthConfig,
    AuthorizationType,
    AuthProvider,
)
from .config import DEFAULT_ENVIRONMENT_NAME, DEFAULT_TRANSFORM_PARAMETERS, TransformParameters
from .conflict_resolution import ResolverConfig
from .exceptions import ConfigValidationError, TransformError
from .resource_graph import (
    API_LOGICAL_ID,
    ROOT_STACK_NAME,
    SCHEMA_LOGICAL_ID,
    ResourceGraph,
    ResourceGraphBuilder,
    api_id,
    asset_reference,
)
from .schema_normalizer import NormalizedSchema
from .transformers import TransformContext, TransformerPlugin, default_transformers
from .user_defined_slots import SlotKey

logger = structlog.get_logger(__name__)

API_OWNER = "api"
USER_SLOTS_OWNER = "user-defined-slots"
BUILD_OWNER = "resource-graph"

API_NAME_PARAMETER = "AppSyncApiName"
ENV_PARAMETER = "env"
DEPLOYMENT_BUCKET_PARAMETER = "S3DeploymentBucket"
DEPLOYMENT_ROOT_KEY_PARAMETER = "S3DeploymentRootKey"
API_KEY_EXPIRATION_PARAMETER = "APIKeyExpirationEpoch"
API_KEY_LOGICAL_ID = "GraphQLAPIDefaultApiKey"
AUTHORIZER_PERMISSION_LOGICAL_ID = "GraphQLAPIAuthorizerPermission"

HAS_ENVIRONMENT_CONDITION = "HasEnvironmentParameter"
CREATE_API_KEY_CONDITION = "ShouldCreateAPIKey"


def _provider_config(provider: AuthProvider, default: bool) -> Dict[str, Any]:
    config: Dict[str, Any] = {"AuthenticationType": provider.authentication_type.value}
    if provider.authentication_type == AuthorizationType.AMAZON_COGNITO_USER_POOLS:
        user_pool: Dict[str, Any] = {
            "UserPoolId": {"Ref": USER_POOL_ID_PARAMETER},
            "AwsRegion": {"Ref": "AWS::Region"},
        }
        if default:
            user_pool["DefaultAction"] = "ALLOW"
        config["UserPoolConfig"] = user_pool
    elif provider.authentication_type == AuthorizationType.OPENID_CONNECT:
        oidc: Dict[str, Any] = {"Issuer": provider.oidc_issuer_url}
        if provider.oidc_client_id:
            oidc["ClientId"] = provider.oidc_client_id
        if provider.oidc_auth_ttl:
            oidc["AuthTTL"] = provider.oidc_auth_ttl * 1000
        if provider.oidc_iat_ttl:
            oidc["IatTTL"] = provider.oidc_iat_ttl * 1000
        config["OpenIDConnectConfig"] = oidc
    elif provider.authentication_type == AuthorizationType.AWS_LAMBDA:
        config["LambdaAuthorizerConfig"] = {
            "AuthorizerUri": {"Ref": LAMBDA_AUTHORIZER_ARN_PARAMETER},
            "AuthorizerResultTtlInSeconds": provider.lambda_ttl_seconds,
        }
    return config


def _create_api(builder: ResourceGraphBuilder, context: TransformContext) -> None:
    auth_config = context.auth_config
    parameters = context.transform_parameters

    builder.add_root_parameter(
        API_NAME_PARAMETER, {"Type": "String", "Default": "AppSyncSimpleTransform"}
    )
    builder.add_root_parameter(
        ENV_PARAMETER, {"Type": "String", "Default": DEFAULT_ENVIRONMENT_NAME}
    )
    builder.add_root_parameter(
        DEPLOYMENT_BUCKET_PARAMETER,
        {"Type": "String", "Description": "An S3 Bucket name where assets are deployed"},
    )
    builder.add_root_parameter(
        DEPLOYMENT_ROOT_KEY_PARAMETER,
        {
            "Type": "String",
            "Description": "An S3 key relative to the S3DeploymentBucket that points to the root of the deployment directory.",
        },
    )
    if auth_config.has_provider(AuthorizationType.AMAZON_COGNITO_USER_POOLS):
        builder.add_root_parameter(USER_POOL_ID_PARAMETER, {"Type": "String"})
    if auth_config.has_provider(AuthorizationType.AWS_IAM):
        builder.add_root_parameter(AUTH_ROLE_NAME_PARAMETER, {"Type": "String"})
        builder.add_root_parameter(UNAUTH_ROLE_NAME_PARAMETER, {"Type": "String"})
    if auth_config.has_provider(AuthorizationType.AWS_LAMBDA):
        builder.add_root_parameter(LAMBDA_AUTHORIZER_ARN_PARAMETER, {"Type": "String"})

    builder.add_root_condition(
        HAS_ENVIRONMENT_CONDITION,
        {"Fn::Not": [{"Fn::Equals": [{"Ref": ENV_PARAMETER}, DEFAULT_ENVIRONMENT_NAME]}]},
    )

    # appsync api
    api_properties: Dict[str, Any] = {
        "Name": {
            "Fn::If": [
                HAS_ENVIRONMENT_CONDITION,
                {"Fn::Join": ["-", [{"Ref": API_NAME_PARAMETER}, {"Ref": ENV_PARAMETER}]]},
                {"Ref": API_NAME_PARAMETER},
            ]
        },
        "XrayEnabled": parameters.xray_enabled,
        "IntrospectionConfig": "ENABLED" if parameters.introspection_enabled else "DISABLED",
    }
    api_properties.update(_provider_config(auth_config.default_authentication, default=True))
    if auth_config.additional_authentication_providers:
        api_properties["AdditionalAuthenticationProviders"] = [
            _provider_config(provider, default=False)
            for provider in auth_config.additional_authentication_providers
        ]
    builder.add_root_resource(
        API_LOGICAL_ID, {"Type": "AWS::AppSync::GraphQLApi", "Properties": api_properties}
    )
    builder.add_root_resource(
        SCHEMA_LOGICAL_ID,
        {
            "Type": "AWS::AppSync::GraphQLSchema",
            "Properties": {"ApiId": api_id(), "DefinitionS3Location": asset_reference("schema.graphql")},
        },
    )
    builder.nested_stack_dependencies.append(SCHEMA_LOGICAL_ID)

    builder.add_output(
        ROOT_STACK_NAME,
        "GraphQLAPIIdOutput",
        {"Description": "Your GraphQL API ID.", "Value": api_id()},
    )
    builder.add_output(
        ROOT_STACK_NAME,
        "GraphQLAPIEndpointOutput",
        {
            "Description": "Your GraphQL API endpoint.",
            "Value": {"Fn::GetAtt": [API_LOGICAL_ID, "GraphQLUrl"]},
        },
    )

    api_key = auth_config.get_provider(AuthorizationType.API_KEY)
    if api_key is not None and not parameters.suppress_api_key_generation:
        builder.add_root_parameter(
            API_KEY_EXPIRATION_PARAMETER,
            {
                "Type": "Number",
                "Default": -1,
                "Description": "The epoch time in seconds when the API Key should expire. Setting this to -1 will not create an API Key.",
            },
        )
        builder.add_root_condition(
            CREATE_API_KEY_CONDITION,
            {"Fn::Not": [{"Fn::Equals": [{"Ref": API_KEY_EXPIRATION_PARAMETER}, "-1"]}]},
        )
        key_properties: Dict[str, Any] = {
            "ApiId": api_id(),
            "Expires": {"Ref": API_KEY_EXPIRATION_PARAMETER},
        }
        if api_key.api_key_description:
            key_properties["Description"] = api_key.api_key_description
        builder.add_root_resource(
            API_KEY_LOGICAL_ID,
            {
                "Type": "AWS::AppSync::ApiKey",
                "Condition": CREATE_API_KEY_CONDITION,
                "Properties": key_properties,
            },
        )
        builder.add_output(
            ROOT_STACK_NAME,
            "GraphQLAPIKeyOutput",
            {
                "Description": "Your GraphQL API key. Provide via 'x-api-key' header.",
                "Condition": CREATE_API_KEY_CONDITION,
                "Value": {"Fn::GetAtt": [API_KEY_LOGICAL_ID, "ApiKey"]},
            },
        )

    if auth_config.has_provider(AuthorizationType.AWS_LAMBDA):
        builder.add_root_resource(
            AUTHORIZER_PERMISSION_LOGICAL_ID,
            {
                "Type": "AWS::Lambda::Permission",
                "Properties": {
                    "Action": "lambda:InvokeFunction",
                    "FunctionName": {"Ref": LAMBDA_AUTHORIZER_ARN_PARAMETER},
                    "Principal": "appsync.amazonaws.com",
                    "SourceArn": {"Fn::GetAtt": [API_LOGICAL_ID, "Arn"]},
                },
            },
        )


class TransformOrchestrator:
    """Runs transformer plugins in a fixed order against one resource graph builder.

    Built-in transformers run in phase order; ``custom_transformers`` run
    after them, in the order given.
    """

    def __init__(
        self,
        transformers: Sequence[TransformerPlugin],
        custom_transformers: Sequence[TransformerPlugin] = (),
    ) -> None:
        ordered = sorted(transformers, key=lambda plugin: plugin.phase) + list(custom_transformers)
        names: List[str] = []
        for plugin in ordered:
            if plugin.name in names or plugin.name in (API_OWNER, USER_SLOTS_OWNER, BUILD_OWNER):
                raise ConfigValidationError(
                    f"Transformer name '{plugin.name}' is already in use",
                    context={"transformers": ", ".join(names)},
                )
            names.append(plugin.name)
        self.transformers: Tuple[TransformerPlugin, ...] = tuple(ordered)

    def transform(
        self,
        schema: NormalizedSchema,
        user_slots: Mapping[SlotKey, str],
        auth_config: AuthConfig,
        stack_mapping: Optional[Mapping[str, str]] = None,
        resolver_config: Optional[ResolverConfig] = None,
        transform_parameters: Optional[TransformParameters] = None,
        admin_roles: Sequence[str] = (),
        identity_pool_id: Optional[str] = None,
    ) -> ResourceGraph:
        """Transform a normalized schema into a resource graph.

        Raises:
            TransformError: If a transformer, the user slot splice or the
                final build fails; the original exception is the cause
        """
        context = TransformContext(
            schema=schema,
            auth_config=auth_config,
            transform_parameters=transform_parameters or DEFAULT_TRANSFORM_PARAMETERS,
            resolver_config=resolver_config,
            admin_roles=tuple(admin_roles),
            identity_pool_id=identity_pool_id,
        )
        builder = ResourceGraphBuilder(schema, stack_mapping)
        builder.dedupe_functions = not context.transform_parameters.disable_resolver_deduping

        self._run(API_OWNER, builder, lambda: _create_api(builder, context))
        for plugin in self.transformers:
            logger.debug("transformer_started", transformer=plugin.name, phase=plugin.phase.name)
            self._run(plugin.name, builder, lambda: plugin.apply_to(builder, context))
        self._run(USER_SLOTS_OWNER, builder, lambda: builder.apply_user_slots(user_slots))

        try:
            graph = builder.build()
        except ValueError as e:
            raise TransformError(BUILD_OWNER, str(e), cause=e) from e

        logger.info(
            "transform_completed",
            stacks=sorted(graph.stacks),
            resolvers=len(graph.resolvers),
            user_slots=len(user_slots),
        )
        return graph

    def _run(self, owner: str, builder: ResourceGraphBuilder, step) -> None:
        try:
            with builder.open_for(owner):
                step()
        except TransformError:
            raise
        except Exception as e:
            logger.error("transformer_failed", transformer=owner, error=str(e))
            raise TransformError(owner, str(e), cause=e) from e


def execute_transform(
    schema: NormalizedSchema,
    user_slots: Mapping[SlotKey, str],
    auth_config: AuthConfig,
    stack_mapping: Optional[Mapping[str, str]] = None,
    resolver_config: Optional[ResolverConfig] = None,
    transform_parameters: Optional[TransformParameters] = None,
    admin_roles: Sequence[str] = (),
    identity_pool_id: Optional[str] = None,
    custom_transformers: Sequence[TransformerPlugin] = (),
) -> ResourceGraph:
    """Run the built-in transformers, then ``custom_transformers``, over ``schema``."""
    orchestrator = TransformOrchestrator(default_transformers(), custom_transformers)
    return orchestrator.transform(
        schema,
        user_slots,
        auth_config,
        stack_mapping=stack_mapping,
        resolver_config=resolver_config,
        transform_parameters=transform_parameters,
        admin_roles=admin_roles,
        identity_pool_id=identity_pool_id,
    )
