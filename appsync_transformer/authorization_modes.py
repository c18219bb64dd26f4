"""
Authorization mode conversion.

Turns the caller's ordered list of authorization modes into the auth config
the transformers consume, plus the side values needed further down the
pipeline: identity pool id, admin role names and the template-include
parameters for values that may be unresolved CDK tokens (user pool ids,
role names, function ARNs).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple, Union

import structlog

from .exceptions import InvalidAuthConfigError

logger = structlog.get_logger(__name__)

USER_POOL_ID_PARAMETER = "AuthCognitoUserPoolId"
AUTH_ROLE_NAME_PARAMETER = "authRoleName"
UNAUTH_ROLE_NAME_PARAMETER = "unauthRoleName"
LAMBDA_AUTHORIZER_ARN_PARAMETER = "AuthLambdaFunctionArn"

DEFAULT_API_KEY_EXPIRATION_DAYS = 7


class AuthorizationType(str, Enum):
    API_KEY = "API_KEY"
    AWS_IAM = "AWS_IAM"
    AMAZON_COGNITO_USER_POOLS = "AMAZON_COGNITO_USER_POOLS"
    OPENID_CONNECT = "OPENID_CONNECT"
    AWS_LAMBDA = "AWS_LAMBDA"


# Provider names used by @auth rules, mapped to the AppSync auth type.
RULE_PROVIDER_AUTH_TYPES = {
    "apiKey": AuthorizationType.API_KEY,
    "iam": AuthorizationType.AWS_IAM,
    "userPools": AuthorizationType.AMAZON_COGNITO_USER_POOLS,
    "oidc": AuthorizationType.OPENID_CONNECT,
    "function": AuthorizationType.AWS_LAMBDA,
}


@dataclass(frozen=True)
class ApiKeyAuthorizationMode:
    kind: ClassVar[AuthorizationType] = AuthorizationType.API_KEY

    expires_days: int = DEFAULT_API_KEY_EXPIRATION_DAYS
    description: Optional[str] = None
    default: bool = False
    name: str = "default"


@dataclass(frozen=True)
class IamAuthorizationMode:
    """Identity-pool backed IAM authorization with optional admin roles."""

    kind: ClassVar[AuthorizationType] = AuthorizationType.AWS_IAM

    identity_pool_id: str
    authenticated_user_role_name: str
    unauthenticated_user_role_name: str
    admin_role_names: Tuple[str, ...] = ()
    default: bool = False
    name: str = "default"


@dataclass(frozen=True)
class UserPoolAuthorizationMode:
    kind: ClassVar[AuthorizationType] = AuthorizationType.AMAZON_COGNITO_USER_POOLS

    user_pool_id: str
    default: bool = False
    name: str = "default"


@dataclass(frozen=True)
class OidcAuthorizationMode:
    kind: ClassVar[AuthorizationType] = AuthorizationType.OPENID_CONNECT

    provider_name: str
    issuer_url: str
    client_id: Optional[str] = None
    token_expiry_from_auth_seconds: Optional[int] = None
    token_expiry_from_issue_seconds: Optional[int] = None
    default: bool = False
    name: str = "default"


@dataclass(frozen=True)
class LambdaAuthorizationMode:
    kind: ClassVar[AuthorizationType] = AuthorizationType.AWS_LAMBDA

    function_arn: str
    ttl_seconds: int = 300
    default: bool = False
    name: str = "default"


AuthorizationMode = Union[
    ApiKeyAuthorizationMode,
    IamAuthorizationMode,
    UserPoolAuthorizationMode,
    OidcAuthorizationMode,
    LambdaAuthorizationMode,
]


@dataclass(frozen=True)
class AuthProvider:
    authentication_type: AuthorizationType
    name: str = "default"
    api_key_expiration_days: Optional[int] = None
    api_key_description: Optional[str] = None
    oidc_provider_name: Optional[str] = None
    oidc_issuer_url: Optional[str] = None
    oidc_client_id: Optional[str] = None
    oidc_auth_ttl: Optional[int] = None
    oidc_iat_ttl: Optional[int] = None
    lambda_ttl_seconds: Optional[int] = None


@dataclass(frozen=True)
class AuthConfig:
    default_authentication: AuthProvider
    additional_authentication_providers: Tuple[AuthProvider, ...] = ()

    @property
    def providers(self) -> Tuple[AuthProvider, ...]:
        return (self.default_authentication,) + self.additional_authentication_providers

    def get_provider(self, authentication_type: AuthorizationType) -> Optional[AuthProvider]:
        for provider in self.providers:
            if provider.authentication_type == authentication_type:
                return provider
        return None

    def has_provider(self, authentication_type: AuthorizationType) -> bool:
        return self.get_provider(authentication_type) is not None


@dataclass(frozen=True)
class AuthConversionResult:
    auth_config: AuthConfig
    identity_pool_id: Optional[str] = None
    admin_roles: Tuple[str, ...] = ()
    cfn_include_parameters: Dict[str, str] = field(default_factory=dict)


def _to_auth_provider(mode: AuthorizationMode) -> AuthProvider:
    if isinstance(mode, ApiKeyAuthorizationMode):
        if mode.expires_days < 1 or mode.expires_days > 365:
            raise InvalidAuthConfigError(
                f"API key expiry must be between 1 and 365 days, found {mode.expires_days}"
            )
        return AuthProvider(
            authentication_type=mode.kind,
            name=mode.name,
            api_key_expiration_days=mode.expires_days,
            api_key_description=mode.description,
        )
    if isinstance(mode, OidcAuthorizationMode):
        return AuthProvider(
            authentication_type=mode.kind,
            name=mode.name,
            oidc_provider_name=mode.provider_name,
            oidc_issuer_url=mode.issuer_url,
            oidc_client_id=mode.client_id,
            oidc_auth_ttl=mode.token_expiry_from_auth_seconds,
            oidc_iat_ttl=mode.token_expiry_from_issue_seconds,
        )
    if isinstance(mode, LambdaAuthorizationMode):
        return AuthProvider(
            authentication_type=mode.kind, name=mode.name, lambda_ttl_seconds=mode.ttl_seconds
        )
    if isinstance(mode, (IamAuthorizationMode, UserPoolAuthorizationMode)):
        return AuthProvider(authentication_type=mode.kind, name=mode.name)
    raise InvalidAuthConfigError(f"Unsupported authorization mode {type(mode).__name__}")


def _default_mode(modes: Sequence[AuthorizationMode]) -> AuthorizationMode:
    flagged = [mode for mode in modes if mode.default]
    if len(flagged) > 1:
        raise InvalidAuthConfigError(
            "Only one authorization mode may be the default, found "
            + ", ".join(f"{mode.kind.value}:{mode.name}" for mode in flagged)
        )
    if flagged:
        return flagged[0]
    if len(modes) == 1:
        return modes[0]
    raise InvalidAuthConfigError(
        "A default authorization mode is required if multiple modes are configured"
    )


def _cfn_include_parameters(modes: Sequence[AuthorizationMode]) -> Dict[str, str]:
    parameters: Dict[str, str] = {}
    for mode in modes:
        if isinstance(mode, UserPoolAuthorizationMode):
            parameters[USER_POOL_ID_PARAMETER] = mode.user_pool_id
        elif isinstance(mode, IamAuthorizationMode):
            parameters[AUTH_ROLE_NAME_PARAMETER] = mode.authenticated_user_role_name
            parameters[UNAUTH_ROLE_NAME_PARAMETER] = mode.unauthenticated_user_role_name
        elif isinstance(mode, LambdaAuthorizationMode):
            parameters[LAMBDA_AUTHORIZER_ARN_PARAMETER] = mode.function_arn
    return parameters


def convert_authorization_modes(
    modes: Sequence[AuthorizationMode], requires_auth: bool = False
) -> AuthConversionResult:
    """Convert authorization modes into the transformer auth config.

    Args:
        modes: Ordered authorization modes
        requires_auth: Whether the schema carries @auth directives

    Returns:
        AuthConversionResult with the auth config and its side outputs

    Raises:
        InvalidAuthConfigError: If the modes are empty while auth is required,
            repeat a kind, or do not identify a single default
    """
    modes = list(modes)
    if not modes:
        if requires_auth:
            raise InvalidAuthConfigError(
                "At least one authorization mode is required when the schema uses @auth"
            )
        logger.warning(
            "no_authorization_modes",
            fallback=AuthorizationType.API_KEY.value,
            expires_days=DEFAULT_API_KEY_EXPIRATION_DAYS,
        )
        modes = [ApiKeyAuthorizationMode(default=True)]

    # at most one provider per kind
    seen: Dict[AuthorizationType, str] = {}
    for mode in modes:
        if mode.kind in seen:
            raise InvalidAuthConfigError(
                f"Authorization mode {mode.kind.value} is configured more than once "
                f"('{seen[mode.kind]}' and '{mode.name}')",
                context={"kind": mode.kind.value},
            )
        seen[mode.kind] = mode.name

    default_mode = _default_mode(modes)
    auth_config = AuthConfig(
        default_authentication=_to_auth_provider(default_mode),
        additional_authentication_providers=tuple(
            _to_auth_provider(mode) for mode in modes if mode is not default_mode
        ),
    )

    iam_modes = [mode for mode in modes if isinstance(mode, IamAuthorizationMode)]
    admin_roles: List[str] = []
    for mode in iam_modes:
        admin_roles.extend(role for role in mode.admin_role_names if role not in admin_roles)

    return AuthConversionResult(
        auth_config=auth_config,
        identity_pool_id=iam_modes[0].identity_pool_id if iam_modes else None,
        admin_roles=tuple(admin_roles),
        cfn_include_parameters=_cfn_include_parameters(modes),
    )
