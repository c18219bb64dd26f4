"""
Resource graph and its builder.

Transformer plugins describe the generated API through a
``ResourceGraphBuilder``: CloudFormation resources placed into named stacks,
resolver pipelines with their slot templates, Lambda deployment packages and
schema additions. ``build()`` turns that description into an immutable
``ResourceGraph``:

* pipeline functions and resolvers are emitted in slot order,
* references that cross stack boundaries are rewritten into nested stack
  parameters and outputs,
* the root stack gets one ``AWS::CloudFormation::Stack`` per nested stack.

Plugins write references as if every resource lived in a single template;
the builder owns placement.
"""

import json
import re
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import structlog
from graphql import (
    DirectiveDefinitionNode,
    DocumentNode,
    ObjectTypeDefinitionNode,
    parse,
    print_ast,
)

from .schema_normalizer import NormalizedSchema
from .user_defined_slots import SlotKey

logger = structlog.get_logger(__name__)

ROOT_STACK_NAME = "root"
API_LOGICAL_ID = "GraphQLAPI"
SCHEMA_LOGICAL_ID = "GraphQLSchema"
NONE_DATA_SOURCE = "NoneDataSource"
NONE_DATA_SOURCE_NAME = "NONE_DS"

ASSET_REFERENCE = "Transformer::AssetReference"
APPSYNC_DIRECTIVES = (
    "aws_api_key",
    "aws_iam",
    "aws_oidc",
    "aws_lambda",
    "aws_cognito_user_pools",
    "aws_subscribe",
    "deprecated",
)

PASS_THROUGH_REQUEST = "{}"
PASS_THROUGH_RESPONSE = "$util.toJson($ctx.prev.result)"


class OperationKind(str, Enum):
    QUERY = "query"
    MUTATION = "mutation"
    CUSTOM = "custom"


DATA_STEP = "data"

SLOT_ORDER = {
    OperationKind.QUERY: (
        "init", "preAuth", "auth", "postAuth", "preDataLoad", DATA_STEP, "postDataLoad", "finish",
    ),
    OperationKind.MUTATION: (
        "init", "preAuth", "auth", "postAuth", "preUpdate", DATA_STEP, "postUpdate", "finish",
    ),
    OperationKind.CUSTOM: ("init", "preAuth", "auth", "postAuth", "function", "finish"),
}


def api_id() -> Dict[str, Any]:
    return {"Fn::GetAtt": [API_LOGICAL_ID, "ApiId"]}


def asset_reference(path: str, form: str = "url") -> Dict[str, Any]:
    """Placeholder for the deployed location of a materialized asset.

    ``form`` is ``url`` for an ``s3://`` URL or ``key`` for the object key.
    """
    return {ASSET_REFERENCE: {"Path": path, "Form": form}}


def resolver_asset_path(key: str) -> str:
    return f"resolvers/{key}"


def function_asset_path(name: str) -> str:
    return f"functions/{name}.zip"


def stack_asset_path(name: str) -> str:
    return f"stacks/{name}.json"


def empty_template() -> Dict[str, Any]:
    return {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Description": "An auto-generated nested stack.",
        "Parameters": {},
        "Conditions": {},
        "Resources": {},
        "Outputs": {},
    }


@dataclass(frozen=True)
class FunctionArtifact:
    """Source for a Lambda function packaged by the asset materializer."""

    code: str
    handler: str = "index.handler"
    runtime: str = "python3.12"
    file_name: str = "index.py"


@dataclass(frozen=True)
class ResourceGraph:
    schema: str
    root_stack: Dict[str, Any]
    stacks: Dict[str, Dict[str, Any]]
    resolvers: Dict[str, str]
    functions: Dict[str, FunctionArtifact]

    def serialize(self) -> str:
        return json.dumps(asdict(self), indent=2)


@dataclass
class PipelineFunction:
    request_key: str
    response_key: str
    data_source: str = NONE_DATA_SOURCE
    sync_config: Optional[Dict[str, Any]] = None


@dataclass
class ResolverPipeline:
    type_name: str
    field_name: str
    kind: Optional[OperationKind] = None
    stack_name: Optional[str] = None
    data_function: Optional[PipelineFunction] = None
    slots: Dict[Tuple[str, int], PipelineFunction] = field(default_factory=dict)

    @property
    def logical_id(self) -> str:
        return f"{self.type_name}{self.field_name}Resolver"

    def next_index(self, slot_name: str) -> int:
        indices = [index for name, index in self.slots if name == slot_name]
        return max(indices) + 1 if indices else 1

    def ordered_functions(self) -> List[Tuple[str, PipelineFunction]]:
        ordered = []
        for slot_name in SLOT_ORDER[self.kind]:
            if slot_name == DATA_STEP:
                if self.data_function is not None:
                    ordered.append(
                        (f"{self.type_name}{self.field_name}DataResolverFn", self.data_function)
                    )
                continue
            for index in sorted(i for name, i in self.slots if name == slot_name):
                ordered.append(
                    (
                        f"{self.type_name}{self.field_name}{slot_name}{index}Function",
                        self.slots[(slot_name, index)],
                    )
                )
        return ordered


def _parameter_name(*parts: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "", "".join(parts))


class ResourceGraphBuilder:
    """Mutable description of a transform run, written to by one plugin at a time."""

    def __init__(
        self, schema: NormalizedSchema, stack_mapping: Optional[Mapping[str, str]] = None
    ) -> None:
        self.schema = schema
        self.stack_mapping = dict(stack_mapping or {})
        self.root_stack = empty_template()
        self.root_stack["Description"] = "An auto-generated AppSync GraphQL API."
        self.stacks: Dict[str, Dict[str, Any]] = {}
        self.resolvers: Dict[str, str] = {}
        self.functions: Dict[str, FunctionArtifact] = {}
        self.pipelines: Dict[Tuple[str, str], ResolverPipeline] = {}
        self.type_directives: Dict[str, List[str]] = {}
        self.type_fields: Dict[str, List[str]] = {}
        self.schema_definitions: List[str] = []
        self.nested_stack_dependencies: List[str] = []
        # identical pipeline functions within a stack share one FunctionConfiguration
        self.dedupe_functions = True
        self._owners: Dict[Tuple[str, str], str] = {}
        self._locations: Dict[str, str] = {}
        self._owner: Optional[str] = None
        self._built = False

    @contextmanager
    def open_for(self, owner: str) -> Iterator["ResourceGraphBuilder"]:
        """Give ``owner`` exclusive write access for the duration of the block."""
        if self._built:
            raise RuntimeError("resource graph has already been built")
        if self._owner is not None:
            raise RuntimeError(f"resource graph is already open for '{self._owner}'")
        self._owner = owner
        try:
            yield self
        finally:
            self._owner = None

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    def _check_open(self) -> None:
        if self._owner is None:
            raise RuntimeError("resource graph is not open for writing")

    def _claim(self, category: str, name: str) -> None:
        self._check_open()
        existing = self._owners.get((category, name))
        if existing is not None and existing != self._owner:
            raise ValueError(f"{category} '{name}' is already defined by transformer '{existing}'")
        self._owners[(category, name)] = self._owner

    # Stacks and resources

    def stack_for(self, logical_id: str, default_stack: str) -> str:
        return self.stack_mapping.get(logical_id, default_stack)

    def _place(self, default_stack: str, logical_id: str, resource: Dict[str, Any]) -> str:
        stack_name = self.stack_for(logical_id, default_stack)
        if stack_name == ROOT_STACK_NAME or stack_name in self.root_stack["Resources"]:
            raise ValueError(f"stack name '{stack_name}' is reserved")
        previous = self._locations.get(logical_id)
        if previous is not None:
            del self._template(previous)["Resources"][logical_id]
        elif logical_id in self.root_stack["Resources"]:
            raise ValueError(f"logical id '{logical_id}' is already in use")
        self.stacks.setdefault(stack_name, empty_template())["Resources"][logical_id] = resource
        self._locations[logical_id] = stack_name
        return stack_name

    def _template(self, stack_name: str) -> Dict[str, Any]:
        if stack_name == ROOT_STACK_NAME:
            return self.root_stack
        return self.stacks[stack_name]

    def add_resource(self, default_stack: str, logical_id: str, resource: Dict[str, Any]) -> str:
        """Add a resource to ``default_stack`` unless the stack mapping moves it.

        Returns:
            The name of the stack the resource was placed in
        """
        self._claim("resource", logical_id)
        return self._place(default_stack, logical_id, resource)

    def add_root_resource(self, logical_id: str, resource: Dict[str, Any]) -> None:
        self._claim("resource", logical_id)
        if logical_id in self._locations or logical_id in self.stacks:
            raise ValueError(f"logical id '{logical_id}' is already in use")
        if logical_id == ROOT_STACK_NAME:
            raise ValueError(f"logical id '{logical_id}' is reserved")
        self.root_stack["Resources"][logical_id] = resource

    def add_root_parameter(self, name: str, definition: Dict[str, Any]) -> None:
        self._claim("parameter", name)
        self.root_stack["Parameters"][name] = definition

    def add_root_condition(self, name: str, condition: Dict[str, Any]) -> None:
        self._claim("condition", name)
        self.root_stack["Conditions"][name] = condition

    def add_output(self, stack_name: str, name: str, output: Dict[str, Any]) -> None:
        self._claim("output", f"{stack_name}.{name}")
        self._template(stack_name)["Outputs"][name] = output

    def get_resource(self, logical_id: str) -> Optional[Dict[str, Any]]:
        stack_name = self._locations.get(logical_id)
        if stack_name is not None:
            return self.stacks[stack_name]["Resources"][logical_id]
        return self.root_stack["Resources"].get(logical_id)

    def resource_stack(self, logical_id: str) -> Optional[str]:
        if logical_id in self.root_stack["Resources"]:
            return ROOT_STACK_NAME
        return self._locations.get(logical_id)

    # Resolvers and functions

    def add_resolver_code(self, key: str, code: str) -> None:
        self._claim("resolver", key)
        self.resolvers[key] = code

    def add_function(self, name: str, artifact: FunctionArtifact) -> str:
        """Register a Lambda package; returns its asset path."""
        self._claim("function", name)
        self.functions[name] = artifact
        return function_asset_path(name)

    def pipeline(self, type_name: str, field_name: str) -> ResolverPipeline:
        self._check_open()
        key = (type_name, field_name)
        if key not in self.pipelines:
            self.pipelines[key] = ResolverPipeline(type_name, field_name)
        return self.pipelines[key]

    def add_slot(
        self,
        type_name: str,
        field_name: str,
        slot_name: str,
        request: str,
        response: str = PASS_THROUGH_RESPONSE,
        data_source: str = NONE_DATA_SOURCE,
        index: Optional[int] = None,
    ) -> SlotKey:
        """Add a pipeline function to a resolver slot; returns its request key."""
        pipeline = self.pipeline(type_name, field_name)
        if index is None:
            index = pipeline.next_index(slot_name)
        request_key = SlotKey(type_name, field_name, slot_name, index, "req")
        response_key = request_key.counterpart
        self.add_resolver_code(request_key.resolver_key, request)
        self.add_resolver_code(response_key.resolver_key, response)
        pipeline.slots[(slot_name, index)] = PipelineFunction(
            request_key.resolver_key, response_key.resolver_key, data_source
        )
        return request_key

    # Schema

    def add_type_directives(self, type_name: str, directives: List[str]) -> None:
        self._check_open()
        existing = self.type_directives.setdefault(type_name, [])
        existing.extend(d for d in directives if d not in existing)

    def add_fields(self, type_name: str, fields: List[str]) -> None:
        self._check_open()
        self.type_fields.setdefault(type_name, []).extend(fields)

    def add_schema_definition(self, sdl: str) -> None:
        self._check_open()
        self.schema_definitions.append(sdl)

    # Splicing user overrides

    def apply_user_slots(self, user_slots: Mapping[SlotKey, str]) -> None:
        """Splice user slot code into the pipelines; user code wins over generated code."""
        self._check_open()
        for slot_key, code in user_slots.items():
            pipeline = self.pipelines.get((slot_key.type_name, slot_key.field_name))
            if pipeline is None or pipeline.kind is None:
                raise ValueError(
                    f"slot {slot_key.resolver_key} targets {slot_key.type_name}.{slot_key.field_name}, "
                    "which has no generated resolver"
                )
            valid_slots = [s for s in SLOT_ORDER[pipeline.kind] if s != DATA_STEP]
            if slot_key.slot_name not in valid_slots:
                raise ValueError(
                    f"slot '{slot_key.slot_name}' is not valid for {pipeline.kind.value} "
                    f"{slot_key.type_name}.{slot_key.field_name}; expected one of {', '.join(valid_slots)}"
                )
            self.resolvers[slot_key.resolver_key] = code
            position = (slot_key.slot_name, slot_key.slot_index)
            if position not in pipeline.slots:
                request_key = slot_key._replace(template_type="req")
                response_key = slot_key._replace(template_type="res")
                self.resolvers.setdefault(request_key.resolver_key, PASS_THROUGH_REQUEST)
                self.resolvers.setdefault(response_key.resolver_key, PASS_THROUGH_RESPONSE)
                pipeline.slots[position] = PipelineFunction(
                    request_key.resolver_key, response_key.resolver_key
                )

    # Build

    def build(self) -> ResourceGraph:
        if self._built:
            raise RuntimeError("resource graph has already been built")
        self._emit_pipelines()
        self._wire_stacks()
        self._built = True
        return ResourceGraph(
            schema=self._render_schema(),
            root_stack=self.root_stack,
            stacks=self.stacks,
            resolvers=dict(self.resolvers),
            functions=dict(self.functions),
        )

    def _emit_pipelines(self) -> None:
        uses_none = False
        emitted: Dict[Tuple[str, ...], str] = {}
        for pipeline in self.pipelines.values():
            if pipeline.kind is None or pipeline.stack_name is None:
                raise ValueError(
                    f"slots target {pipeline.type_name}.{pipeline.field_name}, which has no generated resolver"
                )
            function_ids = []
            for logical_id, function in pipeline.ordered_functions():
                uses_none = uses_none or function.data_source == NONE_DATA_SOURCE
                signature = (
                    self.stack_for(logical_id, pipeline.stack_name),
                    function.data_source,
                    self.resolvers[function.request_key],
                    self.resolvers[function.response_key],
                    json.dumps(function.sync_config, sort_keys=True),
                )
                if self.dedupe_functions and signature in emitted:
                    function_ids.append({"Fn::GetAtt": [emitted[signature], "FunctionId"]})
                    continue
                emitted[signature] = logical_id
                properties: Dict[str, Any] = {
                    "ApiId": api_id(),
                    "DataSourceName": {"Fn::GetAtt": [function.data_source, "Name"]},
                    "FunctionVersion": "2018-05-29",
                    "Name": logical_id,
                    "RequestMappingTemplateS3Location": asset_reference(
                        resolver_asset_path(function.request_key)
                    ),
                    "ResponseMappingTemplateS3Location": asset_reference(
                        resolver_asset_path(function.response_key)
                    ),
                }
                if function.sync_config:
                    properties["SyncConfig"] = function.sync_config
                self._place(
                    pipeline.stack_name,
                    logical_id,
                    {"Type": "AWS::AppSync::FunctionConfiguration", "Properties": properties},
                )
                function_ids.append({"Fn::GetAtt": [logical_id, "FunctionId"]})

            self._place(
                pipeline.stack_name,
                pipeline.logical_id,
                {
                    "Type": "AWS::AppSync::Resolver",
                    "Properties": {
                        "ApiId": api_id(),
                        "FieldName": pipeline.field_name,
                        "TypeName": pipeline.type_name,
                        "Kind": "PIPELINE",
                        "PipelineConfig": {"Functions": function_ids},
                        "RequestMappingTemplate": _stash_template(pipeline),
                        "ResponseMappingTemplate": PASS_THROUGH_RESPONSE,
                    },
                },
            )

        if uses_none and NONE_DATA_SOURCE not in self.root_stack["Resources"]:
            self.root_stack["Resources"][NONE_DATA_SOURCE] = {
                "Type": "AWS::AppSync::DataSource",
                "Properties": {"ApiId": api_id(), "Name": NONE_DATA_SOURCE_NAME, "Type": "NONE"},
            }

    def _wire_stacks(self) -> None:
        root_resources = self.root_stack["Resources"]
        root_parameters = self.root_stack["Parameters"]
        wirings: Dict[str, _StackWiring] = {}
        for stack_name, template in self.stacks.items():
            wiring = _StackWiring(stack_name, template, self, root_resources, root_parameters)
            wiring.rewrite()
            wirings[stack_name] = wiring

        _check_acyclic({name: wiring.stack_dependencies for name, wiring in wirings.items()})

        for stack_name, wiring in wirings.items():
            depends_on = list(self.nested_stack_dependencies)
            for dependency in wiring.root_resource_dependencies + wiring.stack_dependencies:
                if dependency not in depends_on:
                    depends_on.append(dependency)
            resource: Dict[str, Any] = {
                "Type": "AWS::CloudFormation::Stack",
                "Properties": {
                    "TemplateURL": asset_reference(stack_asset_path(stack_name)),
                    "Parameters": wiring.parameter_values,
                },
            }
            if depends_on:
                resource["DependsOn"] = depends_on
            root_resources[stack_name] = resource

    def _render_schema(self) -> str:
        definitions = []
        seen_types = set()
        for definition in self.schema.document.definitions:
            if isinstance(definition, ObjectTypeDefinitionNode):
                name = definition.name.value
                seen_types.add(name)
                definition = _strip_transformer_directives(
                    definition,
                    extra_directives=self.type_directives.get(name, ()),
                    extra_fields=self.type_fields.get(name, ()),
                )
            elif _is_transformer_owned(definition):
                continue
            definitions.append(definition)

        for type_name, fields in self.type_fields.items():
            if type_name not in seen_types:
                definitions.extend(parse(f"type {type_name} {{\n{chr(10).join(fields)}\n}}").definitions)
        for sdl in self.schema_definitions:
            definitions.extend(parse(sdl).definitions)
        return print_ast(DocumentNode(definitions=tuple(definitions))) + "\n"


class _StackWiring:
    """Rewrites one nested stack's cross-stack references into parameters."""

    def __init__(
        self,
        stack_name: str,
        template: Dict[str, Any],
        builder: ResourceGraphBuilder,
        root_resources: Dict[str, Any],
        root_parameters: Dict[str, Any],
    ) -> None:
        self.stack_name = stack_name
        self.template = template
        self.builder = builder
        self.root_resources = root_resources
        self.root_parameters = root_parameters
        self.parameter_values: Dict[str, Any] = {}
        self.stack_dependencies: List[str] = []
        self.root_resource_dependencies: List[str] = []

    def rewrite(self) -> None:
        resources = self.template["Resources"]
        for logical_id in list(resources):
            resource = self._rewrite(resources[logical_id])
            depends_on = resource.get("DependsOn")
            if depends_on is not None:
                local = [d for d in _as_list(depends_on) if d in resources]
                for dependency in _as_list(depends_on):
                    if dependency not in resources:
                        self._depend_on(dependency)
                if local:
                    resource["DependsOn"] = local
                else:
                    del resource["DependsOn"]
            resources[logical_id] = resource
        outputs = self.template["Outputs"]
        for name in list(outputs):
            outputs[name] = self._rewrite(outputs[name])

    def _depend_on(self, logical_id: str) -> None:
        owner = self.builder.resource_stack(logical_id)
        if owner is None:
            raise ValueError(f"stack {self.stack_name} depends on unknown resource '{logical_id}'")
        if owner == ROOT_STACK_NAME:
            target = self.root_resource_dependencies
            dependency = logical_id
        else:
            target = self.stack_dependencies
            dependency = owner
        if dependency not in target:
            target.append(dependency)

    def _declare(self, name: str, value: Any) -> Dict[str, Any]:
        self.template["Parameters"].setdefault(name, {"Type": "String"})
        self.parameter_values.setdefault(name, value)
        return {"Ref": name}

    def _reference(self, target: str, attribute: Optional[str]) -> Any:
        local = target in self.template["Resources"] or target in self.template["Parameters"]
        if local or target.startswith("AWS::"):
            return None
        if attribute is None and target in self.root_parameters:
            return self._declare(target, {"Ref": target})
        expression = (
            {"Ref": target} if attribute is None else {"Fn::GetAtt": [target, attribute]}
        )
        parameter = _parameter_name("ref", target, attribute or "")
        owner = self.builder.resource_stack(target)
        if owner == ROOT_STACK_NAME:
            return self._declare(parameter, expression)
        if owner is None:
            raise ValueError(f"unresolved reference to '{target}' in stack {self.stack_name}")
        output = _parameter_name("out", target, attribute or "")
        self.builder.stacks[owner]["Outputs"].setdefault(output, {"Value": expression})
        if owner not in self.stack_dependencies:
            self.stack_dependencies.append(owner)
        return self._declare(parameter, {"Fn::GetAtt": [owner, f"Outputs.{output}"]})

    def _rewrite(self, node: Any) -> Any:
        if isinstance(node, list):
            return [self._rewrite(item) for item in node]
        if not isinstance(node, dict):
            return node
        if ASSET_REFERENCE in node:
            for parameter in ("S3DeploymentBucket", "S3DeploymentRootKey"):
                self._declare(parameter, {"Ref": parameter})
            return node
        if list(node) == ["Ref"] and isinstance(node["Ref"], str):
            return self._reference(node["Ref"], None) or node
        if list(node) == ["Fn::GetAtt"]:
            target, attribute = node["Fn::GetAtt"]
            return self._reference(target, attribute) or node
        return {key: self._rewrite(value) for key, value in node.items()}


def _as_list(value: Any) -> List[str]:
    return [value] if isinstance(value, str) else list(value)


def _check_acyclic(dependencies: Dict[str, List[str]]) -> None:
    visiting: List[str] = []
    done = set()

    def visit(name: str) -> None:
        if name in done:
            return
        if name in visiting:
            cycle = visiting[visiting.index(name):] + [name]
            raise ValueError(f"circular dependency between stacks: {' -> '.join(cycle)}")
        visiting.append(name)
        for dependency in dependencies.get(name, ()):
            visit(dependency)
        visiting.pop()
        done.add(name)

    for name in dependencies:
        visit(name)


def _stash_template(pipeline: ResolverPipeline) -> str:
    return "\n".join(
        [
            f'$util.qr($ctx.stash.put("typeName", "{pipeline.type_name}"))',
            f'$util.qr($ctx.stash.put("fieldName", "{pipeline.field_name}"))',
            '$util.qr($ctx.stash.put("conditions", []))',
            '$util.qr($ctx.stash.put("metadata", {}))',
            "{}",
        ]
    )


def _is_transformer_owned(definition: Any) -> bool:
    return (
        isinstance(definition, DirectiveDefinitionNode)
        and definition.name.value not in APPSYNC_DIRECTIVES
    )


def _strip_transformer_directives(
    node: ObjectTypeDefinitionNode, extra_directives=(), extra_fields=()
) -> ObjectTypeDefinitionNode:
    def keep(directives):
        return tuple(d for d in directives or () if d.name.value in APPSYNC_DIRECTIVES)

    stripped = parse(
        "type _ "
        + " ".join(extra_directives)
        + (" {\n" + "\n".join(extra_fields) + "\n}" if extra_fields else "")
    ).definitions[0]
    fields = []
    for field_node in node.fields or ():
        kept = field_node.__copy__()
        kept.directives = keep(field_node.directives)
        fields.append(kept)
    result = node.__copy__()
    result.directives = keep(node.directives) + tuple(stripped.directives or ())
    result.fields = tuple(fields) + tuple(stripped.fields or ())
    return result
