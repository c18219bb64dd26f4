"""
Schema normalization.

Parses the caller's GraphQL schema, validates it against the transformer
directive set, injects the fields that ``@model`` types get by default and
expands ``@auth`` rules to their fully-specified form. The result is an
immutable ``NormalizedSchema`` that transformer plugins consume.
"""

from copy import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from graphql import (
    DocumentNode,
    FieldDefinitionNode,
    GraphQLError,
    GraphQLSchema,
    ListTypeNode,
    NonNullTypeNode,
    ObjectTypeDefinitionNode,
    build_ast_schema,
    parse,
    print_ast,
)
from graphql.execution.values import get_argument_values
from graphql.utilities import value_from_ast_untyped

from .exceptions import SchemaValidationError

logger = structlog.get_logger(__name__)

SchemaInput = Union[str, Path, Sequence[Union[str, Path]]]

AWS_SCALARS = (
    "AWSDate",
    "AWSTime",
    "AWSDateTime",
    "AWSTimestamp",
    "AWSEmail",
    "AWSJSON",
    "AWSURL",
    "AWSPhone",
    "AWSIPAddress",
)

TRANSFORMER_DIRECTIVES = """
directive @model(
  queries: ModelQueryMap
  mutations: ModelMutationMap
  subscriptions: ModelSubscriptionMap
  timestamps: TimestampConfiguration
) on OBJECT
input ModelQueryMap { get: String, list: String, sync: String }
input ModelMutationMap { create: String, update: String, delete: String }
input ModelSubscriptionMap { onCreate: [String], onUpdate: [String], onDelete: [String] }
input TimestampConfiguration { createdAt: String, updatedAt: String }

directive @auth(rules: [AuthRule!]!) on OBJECT
input AuthRule {
  allow: AuthStrategy!
  provider: AuthProvider
  identityClaim: String
  groupClaim: String
  ownerField: String
  groupsField: String
  groups: [String]
  operations: [ModelOperation]
}
enum AuthStrategy { owner groups private public custom }
enum AuthProvider { apiKey iam oidc userPools function }
enum ModelOperation { create update delete read get list sync listen search }

directive @primaryKey(sortKeyFields: [String]) on FIELD_DEFINITION
directive @function(name: String!) repeatable on FIELD_DEFINITION

directive @aws_api_key on FIELD_DEFINITION | OBJECT
directive @aws_iam on FIELD_DEFINITION | OBJECT
directive @aws_oidc on FIELD_DEFINITION | OBJECT
directive @aws_lambda on FIELD_DEFINITION | OBJECT
directive @aws_cognito_user_pools(cognito_groups: [String]) on FIELD_DEFINITION | OBJECT
directive @aws_subscribe(mutations: [String]) on FIELD_DEFINITION
"""

DEFAULT_AUTH_PROVIDERS = {
    "public": "apiKey",
    "private": "userPools",
    "owner": "userPools",
    "groups": "userPools",
    "custom": "function",
}

ALLOWED_AUTH_PROVIDERS = {
    "public": ("apiKey", "iam"),
    "private": ("userPools", "oidc", "iam"),
    "owner": ("userPools", "oidc"),
    "groups": ("userPools", "oidc"),
    "custom": ("function",),
}

DEFAULT_AUTH_OPERATIONS = ("create", "update", "delete", "read")
READ_OPERATIONS = ("get", "list", "sync", "listen", "search")


@dataclass(frozen=True)
class AuthRule:
    """An ``@auth`` rule with every default filled in."""

    allow: str
    provider: str
    operations: Tuple[str, ...]
    owner_field: Optional[str] = None
    identity_claim: Optional[str] = None
    group_claim: str = "cognito:groups"
    groups: Tuple[str, ...] = ()
    groups_field: Optional[str] = None

    def allows(self, operation: str) -> bool:
        return operation in self.operations


@dataclass(frozen=True)
class ModelField:
    name: str
    type_name: str
    type_ref: str
    required: bool
    is_list: bool


@dataclass(frozen=True)
class ModelDefinition:
    name: str
    fields: Tuple[ModelField, ...]
    partition_key: str
    sort_keys: Tuple[str, ...] = ()
    auth_rules: Tuple[AuthRule, ...] = ()
    queries: Dict[str, str] = field(default_factory=dict)
    mutations: Dict[str, str] = field(default_factory=dict)
    subscriptions: bool = True
    created_at_field: Optional[str] = None
    updated_at_field: Optional[str] = None

    def get_field(self, name: str) -> Optional[ModelField]:
        for model_field in self.fields:
            if model_field.name == name:
                return model_field
        return None

    @property
    def key_fields(self) -> Tuple[str, ...]:
        return (self.partition_key,) + self.sort_keys


@dataclass(frozen=True)
class FunctionBinding:
    """A field resolved by one or more ``@function`` invocations, in order."""

    type_name: str
    field_name: str
    function_names: Tuple[str, ...]


@dataclass(frozen=True)
class NormalizedSchema:
    text: str
    document: DocumentNode = field(compare=False, repr=False)
    models: Tuple[ModelDefinition, ...] = ()
    function_bindings: Tuple[FunctionBinding, ...] = ()

    @property
    def has_auth_directives(self) -> bool:
        return any(model.auth_rules for model in self.models)

    def get_model(self, name: str) -> Optional[ModelDefinition]:
        for model in self.models:
            if model.name == name:
                return model
        return None

    def object_types(self) -> List[ObjectTypeDefinitionNode]:
        return [
            definition
            for definition in self.document.definitions
            if isinstance(definition, ObjectTypeDefinitionNode)
        ]


def plural(name: str) -> str:
    if name.endswith("y") and len(name) > 1 and name[-2].lower() not in "aeiou":
        return name[:-1] + "ies"
    if name.endswith(("s", "x", "z", "ch", "sh")):
        return name + "es"
    return name + "s"


def load_schema_text(schema: SchemaInput) -> str:
    """Read a schema given as text, a file path, or a sequence of either."""
    parts = [schema] if isinstance(schema, (str, Path)) else list(schema)
    texts = []
    for part in parts:
        if isinstance(part, Path):
            try:
                texts.append(part.read_text(encoding="utf-8"))
            except OSError as e:
                raise SchemaValidationError(
                    f"Unable to read schema file {part}", cause=e
                ) from e
        else:
            texts.append(part)
    text = "\n".join(texts)
    if not text.strip():
        raise SchemaValidationError("schema is empty")
    return text


def normalize_schema(
    schema: SchemaInput, extra_directive_definitions: Sequence[str] = ()
) -> NormalizedSchema:
    """Validate and canonicalize the caller's schema.

    Args:
        schema: Schema text, a schema file path, or a sequence of either
        extra_directive_definitions: SDL for directives owned by custom transformers

    Returns:
        NormalizedSchema ready for the transform orchestrator

    Raises:
        SchemaValidationError: If the schema does not parse or validate
    """
    text = load_schema_text(schema)
    try:
        document = parse(text)
    except GraphQLError as e:
        raise SchemaValidationError(f"Unable to parse schema: {e.message}", cause=e) from e
    _validate(document, extra_directive_definitions)

    models: List[ModelDefinition] = []
    bindings: List[FunctionBinding] = []
    definitions = []
    for definition in document.definitions:
        if isinstance(definition, ObjectTypeDefinitionNode):
            if _directive(definition, "model") is not None:
                definition = _inject_model_defaults(definition)
                models.append(_model_definition(definition))
            elif _directive(definition, "auth") is not None:
                raise SchemaValidationError(
                    f"@auth on type {definition.name.value} requires @model"
                )
            bindings.extend(_function_bindings(definition))
        definitions.append(definition)

    normalized_document = DocumentNode(definitions=tuple(definitions))
    # injected fields must not clash with the caller's types
    _validate(normalized_document, extra_directive_definitions)

    normalized = NormalizedSchema(
        text=print_ast(normalized_document),
        document=normalized_document,
        models=tuple(models),
        function_bindings=tuple(bindings),
    )
    logger.debug(
        "schema_normalized",
        models=[model.name for model in normalized.models],
        function_fields=len(normalized.function_bindings),
    )
    return normalized


def _validate(document: DocumentNode, extra_directive_definitions: Sequence[str]) -> None:
    preamble_sdl = "\n".join(
        [TRANSFORMER_DIRECTIVES]
        + [f"scalar {name}" for name in AWS_SCALARS]
        + list(extra_directive_definitions)
    )
    try:
        preamble = parse(preamble_sdl)
        schema = build_ast_schema(
            DocumentNode(definitions=tuple(preamble.definitions) + tuple(document.definitions))
        )
        _check_directive_arguments(schema, document)
    except (GraphQLError, TypeError) as e:
        raise SchemaValidationError(f"Invalid schema: {e}", cause=e) from e


def _check_directive_arguments(schema: GraphQLSchema, document: DocumentNode) -> None:
    """Coerce every directive argument against its declared input type."""
    for definition in document.definitions:
        for node in (definition, *(getattr(definition, "fields", None) or ())):
            for directive_node in getattr(node, "directives", None) or ():
                directive = schema.get_directive(directive_node.name.value)
                if directive is not None:
                    get_argument_values(directive, directive_node)


def _directive(node: Any, name: str):
    for directive in node.directives or ():
        if directive.name.value == name:
            return directive
    return None


def _directive_args(directive) -> Dict[str, Any]:
    return {
        argument.name.value: value_from_ast_untyped(argument.value)
        for argument in directive.arguments or ()
    }


def _field_node(sdl: str) -> FieldDefinitionNode:
    return parse(f"type _ {{ {sdl} }}").definitions[0].fields[0]


def _field_names(node: ObjectTypeDefinitionNode) -> List[str]:
    return [f.name.value for f in node.fields or ()]


def _timestamp_fields(model_args: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    if "timestamps" not in model_args:
        return "createdAt", "updatedAt"
    timestamps = model_args["timestamps"]
    if timestamps is None:
        return None, None
    return timestamps.get("createdAt"), timestamps.get("updatedAt")


def _inject_model_defaults(node: ObjectTypeDefinitionNode) -> ObjectTypeDefinitionNode:
    existing = _field_names(node)
    prepended: List[FieldDefinitionNode] = []
    appended: List[FieldDefinitionNode] = []

    has_primary_key = any(_directive(f, "primaryKey") for f in node.fields or ())
    if not has_primary_key and "id" not in existing:
        prepended.append(_field_node("id: ID!"))

    for timestamp in _timestamp_fields(_directive_args(_directive(node, "model"))):
        if timestamp and timestamp not in existing:
            appended.append(_field_node(f"{timestamp}: AWSDateTime!"))

    auth = _directive(node, "auth")
    if auth is not None:
        for rule in _directive_args(auth).get("rules") or ():
            if rule.get("allow") == "owner":
                owner_field = rule.get("ownerField") or "owner"
                injected = [f.name.value for f in appended]
                if owner_field not in existing and owner_field not in injected:
                    appended.append(_field_node(f"{owner_field}: String"))

    if not prepended and not appended:
        return node
    injected_node = copy(node)
    injected_node.fields = tuple(prepended) + tuple(node.fields or ()) + tuple(appended)
    return injected_node


def _unwrap_type(type_node) -> Tuple[str, bool, bool]:
    required = isinstance(type_node, NonNullTypeNode)
    if required:
        type_node = type_node.type
    is_list = isinstance(type_node, ListTypeNode)
    while not hasattr(type_node, "name"):
        type_node = type_node.type
    return type_node.name.value, required, is_list


def _expand_auth_rule(type_name: str, rule: Dict[str, Any]) -> AuthRule:
    allow = rule["allow"]
    provider = rule.get("provider") or DEFAULT_AUTH_PROVIDERS[allow]
    if provider not in ALLOWED_AUTH_PROVIDERS[allow]:
        raise SchemaValidationError(
            f"@auth on {type_name}: provider '{provider}' is not valid for allow: {allow}"
        )
    operations: List[str] = []
    for operation in rule.get("operations") or DEFAULT_AUTH_OPERATIONS:
        expanded = READ_OPERATIONS if operation == "read" else (operation,)
        operations.extend(op for op in expanded if op not in operations)
    return AuthRule(
        allow=allow,
        provider=provider,
        operations=tuple(operations),
        owner_field=(rule.get("ownerField") or "owner") if allow == "owner" else None,
        identity_claim=rule.get("identityClaim"),
        group_claim=rule.get("groupClaim") or "cognito:groups",
        groups=tuple(rule.get("groups") or ()),
        groups_field=rule.get("groupsField"),
    )


def _operation_names(
    model_args: Dict[str, Any], argument: str, defaults: Dict[str, str]
) -> Dict[str, str]:
    if argument not in model_args:
        return dict(defaults)
    overrides = model_args[argument]
    if overrides is None:
        return {}
    return {op: overrides.get(op, name) for op, name in defaults.items() if overrides.get(op, name)}


def _model_definition(node: ObjectTypeDefinitionNode) -> ModelDefinition:
    name = node.name.value
    model_args = _directive_args(_directive(node, "model"))

    fields = []
    partition_key = "id"
    sort_keys: Tuple[str, ...] = ()
    for field_node in node.fields or ():
        type_name, required, is_list = _unwrap_type(field_node.type)
        fields.append(
            ModelField(
                name=field_node.name.value,
                type_name=type_name,
                type_ref=print_ast(field_node.type),
                required=required,
                is_list=is_list,
            )
        )
        primary_key = _directive(field_node, "primaryKey")
        if primary_key is not None:
            partition_key = field_node.name.value
            sort_keys = tuple(_directive_args(primary_key).get("sortKeyFields") or ())

    field_names = [f.name for f in fields]
    for sort_key in sort_keys:
        if sort_key not in field_names:
            raise SchemaValidationError(
                f"@primaryKey on {name}: sort key field '{sort_key}' is not a field of {name}",
                context={"model": name, "field": sort_key},
            )

    auth = _directive(node, "auth")
    rules = _directive_args(auth)["rules"] if auth is not None else []
    created_at, updated_at = _timestamp_fields(model_args)

    return ModelDefinition(
        name=name,
        fields=tuple(fields),
        partition_key=partition_key,
        sort_keys=sort_keys,
        auth_rules=tuple(_expand_auth_rule(name, rule) for rule in rules),
        queries=_operation_names(
            model_args,
            "queries",
            {"get": f"get{name}", "list": f"list{plural(name)}", "sync": f"sync{plural(name)}"},
        ),
        mutations=_operation_names(
            model_args,
            "mutations",
            {"create": f"create{name}", "update": f"update{name}", "delete": f"delete{name}"},
        ),
        subscriptions=not ("subscriptions" in model_args and model_args["subscriptions"] is None),
        created_at_field=created_at,
        updated_at_field=updated_at,
    )


def _function_bindings(node: ObjectTypeDefinitionNode) -> List[FunctionBinding]:
    bindings = []
    for field_node in node.fields or ():
        names = tuple(
            _directive_args(directive)["name"]
            for directive in field_node.directives or ()
            if directive.name.value == "function"
        )
        if names:
            bindings.append(FunctionBinding(node.name.value, field_node.name.value, names))
    return bindings
