"""Public data shapes shared by the construct and its tooling."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from aws_cdk import CfnResource
    from aws_cdk import aws_appsync as appsync
    from aws_cdk import cloudformation_include as cfn_inc


@dataclass(frozen=True)
class FunctionSlot:
    """A single overridable resolver pipeline step and its code.

    ``slot_index`` is the integer position of the step within its slot;
    ``template_type`` is ``req`` or ``res``.
    """

    type_name: str
    field_name: str
    slot_name: str
    slot_index: int
    template_type: str
    resolver_code: str


@dataclass
class AmplifyGraphqlApiResources:
    """L1 handles for every resource generated by the transform.

    Typed groups are keyed by logical id; ``stacks`` holds every handle keyed
    by stack name then logical id, with the root template under
    ``ROOT_STACK_NAME``.
    """

    api: "appsync.CfnGraphQLApi"
    schema: "appsync.CfnGraphQLSchema"
    api_key: Optional["appsync.CfnApiKey"] = None
    resolvers: Dict[str, "appsync.CfnResolver"] = field(default_factory=dict)
    appsync_functions: Dict[str, "appsync.CfnFunctionConfiguration"] = field(default_factory=dict)
    data_sources: Dict[str, "appsync.CfnDataSource"] = field(default_factory=dict)
    tables: Dict[str, Any] = field(default_factory=dict)
    roles: Dict[str, Any] = field(default_factory=dict)
    policies: Dict[str, Any] = field(default_factory=dict)
    functions: Dict[str, Any] = field(default_factory=dict)
    additional_resources: Dict[str, "CfnResource"] = field(default_factory=dict)
    stacks: Dict[str, Dict[str, "CfnResource"]] = field(default_factory=dict)
    nested_stacks: Dict[str, "cfn_inc.IncludedNestedStack"] = field(default_factory=dict)
