"""
AppSync transformer: compiles an annotated GraphQL schema into AppSync
infrastructure.

The construct lives in ``appsync_transformer.graphql_api_construct`` so that
the schema pipeline can be imported without the CDK runtime.
"""

from .asset_materializer import StackAssets, materialize_assets
from .authorization_modes import (
    ApiKeyAuthorizationMode,
    AuthConfig,
    AuthConversionResult,
    AuthorizationType,
    IamAuthorizationMode,
    LambdaAuthorizationMode,
    OidcAuthorizationMode,
    UserPoolAuthorizationMode,
    convert_authorization_modes,
)
from .config import DEFAULT_TRANSFORM_PARAMETERS, TransformParameters, resolve_transform_parameters
from .conflict_resolution import (
    AutomergeStrategy,
    ConflictDetectionType,
    ConflictResolution,
    CustomConflictHandlerStrategy,
    OptimisticConcurrencyStrategy,
    convert_to_resolver_config,
)
from .construct_exports import generate_construct_exports
from .exceptions import (
    AppSyncTransformerError,
    AssetWriteError,
    ConfigValidationError,
    ExportMappingError,
    InvalidAuthConfigError,
    MalformedSlotKeyError,
    SchemaValidationError,
    TransformError,
)
from .orchestrator import TransformOrchestrator, execute_transform
from .pipeline import CompiledApi, compile_api
from .resolver_manifest import list_generated_slots
from .resource_graph import FunctionArtifact, ResourceGraph, ResourceGraphBuilder
from .schema_normalizer import NormalizedSchema, normalize_schema
from .transformers import TransformContext, TransformerPhase, TransformerPlugin, default_transformers
from .types import AmplifyGraphqlApiResources, FunctionSlot
from .user_defined_slots import SlotKey, parse_slot_key, parse_user_defined_slots

__version__ = "0.1.0"
