"""Transform parameters and deployment configuration.

Feature toggles for the generated infrastructure live in a frozen
``TransformParameters`` dataclass. Callers override individual options by
name; everything they leave out keeps its documented default.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .exceptions import ConfigValidationError

MAX_ENVIRONMENT_NAME_LENGTH = 8
DEFAULT_ENVIRONMENT_NAME = "NONE"


@dataclass(frozen=True)
class TransformParameters:
    """Options recognized by the transformer and its built-in plugins."""

    # General
    enable_transformer_cfn_outputs: bool = False
    introspection_enabled: bool = True
    xray_enabled: bool = False
    # Model
    sandbox_mode_enabled: bool = False
    disable_resolver_deduping: bool = False
    point_in_time_recovery_enabled: bool = False
    # Auth
    suppress_api_key_generation: bool = False
    use_sub_username_for_default_identity_claim: bool = True
    populate_owner_field_for_static_group_auth: bool = True


DEFAULT_TRANSFORM_PARAMETERS = TransformParameters()


def resolve_transform_parameters(
    overrides: Optional[Mapping[str, Any]] = None,
) -> TransformParameters:
    """Merge caller overrides over the default transform parameters.

    Args:
        overrides: Option name to value; ``None`` or empty keeps the defaults

    Returns:
        TransformParameters with the overrides applied

    Raises:
        ConfigValidationError: If an option is unknown or not a boolean
    """
    if not overrides:
        return DEFAULT_TRANSFORM_PARAMETERS

    known = {f.name for f in dataclasses.fields(TransformParameters)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ConfigValidationError(
            f"Unknown transform parameters: {', '.join(unknown)}",
            context={"recognized": ", ".join(sorted(known))},
        )
    for name, value in overrides.items():
        if not isinstance(value, bool):
            raise ConfigValidationError(
                f"Transform parameter '{name}' must be a boolean, got {value!r}"
            )
    return dataclasses.replace(DEFAULT_TRANSFORM_PARAMETERS, **overrides)


def validate_environment_name(env: Optional[str]) -> str:
    """Validate the deployment environment tag used for logical id suffixing.

    Raises:
        ConfigValidationError: If the tag is empty or longer than 8 characters
    """
    if env is None:
        return DEFAULT_ENVIRONMENT_NAME
    if not env:
        raise ConfigValidationError("environment name must not be empty")
    if len(env) > MAX_ENVIRONMENT_NAME_LENGTH:
        raise ConfigValidationError(
            f"environment name must have a length <= {MAX_ENVIRONMENT_NAME_LENGTH}, found {env}",
            context={"env": env},
        )
    return env
