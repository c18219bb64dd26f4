"""Map the generated templates onto the L1 handles of a template include."""

from typing import Any, Dict, Mapping

import structlog

from .exceptions import ExportMappingError
from .resource_graph import ROOT_STACK_NAME
from .types import AmplifyGraphqlApiResources

logger = structlog.get_logger(__name__)

NESTED_STACK_TYPE = "AWS::CloudFormation::Stack"

# resource type -> typed group on AmplifyGraphqlApiResources
RESOURCE_GROUPS = {
    "AWS::AppSync::Resolver": "resolvers",
    "AWS::AppSync::FunctionConfiguration": "appsync_functions",
    "AWS::AppSync::DataSource": "data_sources",
    "AWS::DynamoDB::Table": "tables",
    "AWS::IAM::Role": "roles",
    "AWS::IAM::Policy": "policies",
    "AWS::IAM::ManagedPolicy": "policies",
    "AWS::Lambda::Function": "functions",
}
SINGLETONS = {
    "AWS::AppSync::GraphQLApi": "api",
    "AWS::AppSync::GraphQLSchema": "schema",
    "AWS::AppSync::ApiKey": "api_key",
}


def _lookup(stack_name: str, logical_id: str, lookup):
    try:
        return lookup(logical_id)
    except Exception as e:
        raise ExportMappingError(
            stack_name,
            logical_id,
            f"Resource {logical_id} in stack {stack_name} was not found in the included template",
            cause=e,
        ) from e


def generate_construct_exports(
    root_stack: Mapping[str, Any], stacks: Mapping[str, Mapping[str, Any]], include: Any
) -> AmplifyGraphqlApiResources:
    """Collect a handle for every generated resource from ``include``.

    Args:
        root_stack: Root template as generated
        stacks: Nested templates by stack name
        include: The ``CfnInclude`` the templates were loaded into

    Returns:
        AmplifyGraphqlApiResources with typed groups and per-stack handles

    Raises:
        ExportMappingError: If a logical id or nested stack is missing from
            the include, or a logical id repeats within a typed group
    """
    singletons: Dict[str, Any] = {}
    groups: Dict[str, Dict[str, Any]] = {group: {} for group in set(RESOURCE_GROUPS.values())}
    groups["additional_resources"] = {}
    by_stack: Dict[str, Dict[str, Any]] = {}
    nested_stacks: Dict[str, Any] = {}

    def classify(stack_name: str, logical_id: str, handle: Any) -> None:
        by_stack.setdefault(stack_name, {})[logical_id] = handle
        resource_type = handle.cfn_resource_type
        singleton = SINGLETONS.get(resource_type)
        if singleton is not None and singleton not in singletons:
            singletons[singleton] = handle
            return
        group = groups[RESOURCE_GROUPS.get(resource_type, "additional_resources")]
        if logical_id in group:
            raise ExportMappingError(
                stack_name,
                logical_id,
                f"Logical id {logical_id} is generated in more than one stack",
            )
        group[logical_id] = handle

    for logical_id, resource in root_stack["Resources"].items():
        if resource["Type"] == NESTED_STACK_TYPE:
            continue
        classify(ROOT_STACK_NAME, logical_id, _lookup(ROOT_STACK_NAME, logical_id, include.get_resource))

    for stack_name, template in stacks.items():
        nested = _lookup(ROOT_STACK_NAME, stack_name, include.get_nested_stack)
        nested_stacks[stack_name] = nested
        for logical_id in template["Resources"]:
            handle = _lookup(stack_name, logical_id, nested.included_template.get_resource)
            classify(stack_name, logical_id, handle)

    for required in ("api", "schema"):
        if required not in singletons:
            raise ExportMappingError(
                ROOT_STACK_NAME, required, f"The generated templates contain no {required} resource"
            )

    logger.debug(
        "construct_exports_generated",
        stacks=sorted(by_stack),
        resources=sum(len(handles) for handles in by_stack.values()),
    )
    return AmplifyGraphqlApiResources(
        api=singletons["api"],
        schema=singletons["schema"],
        api_key=singletons.get("api_key"),
        stacks=by_stack,
        nested_stacks=nested_stacks,
        **groups,
    )
