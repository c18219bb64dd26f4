"""Tests for schema normalization."""

import pytest

from appsync_transformer.exceptions import SchemaValidationError
from appsync_transformer.schema_normalizer import load_schema_text, normalize_schema, plural


class TestNormalizeSchema:
    """Test cases for normalize_schema."""

    def test_model_gets_default_fields(self, public_schema: str) -> None:
        """Test that id and timestamps are injected into @model types."""
        schema = normalize_schema(public_schema)
        model = schema.get_model("Todo")

        assert [f.name for f in model.fields] == ["id", "name", "description", "createdAt", "updatedAt"]
        assert model.partition_key == "id"
        assert model.get_field("id").type_ref == "ID!"
        assert model.get_field("createdAt").type_name == "AWSDateTime"

    def test_operation_names(self, public_schema: str) -> None:
        """Test default query and mutation names."""
        model = normalize_schema(public_schema).get_model("Todo")

        assert model.queries == {"get": "getTodo", "list": "listTodos", "sync": "syncTodos"}
        assert model.mutations == {
            "create": "createTodo",
            "update": "updateTodo",
            "delete": "deleteTodo",
        }
        assert model.subscriptions

    def test_owner_field_injected(self, owner_schema: str) -> None:
        """Test that owner rules add the owner field."""
        model = normalize_schema(owner_schema).get_model("Todo")

        assert model.get_field("owner").type_ref == "String"
        assert model.auth_rules[0].owner_field == "owner"
        assert model.auth_rules[0].provider == "userPools"

    def test_auth_rule_read_expands(self) -> None:
        """Test that the read operation expands to the individual read operations."""
        schema = normalize_schema(
            "type Note @model @auth(rules: [{ allow: public, operations: [read] }]) { body: String }"
        )
        rule = schema.get_model("Note").auth_rules[0]

        assert rule.operations == ("get", "list", "sync", "listen", "search")
        assert rule.allows("get")
        assert not rule.allows("create")
        assert schema.has_auth_directives

    def test_primary_key(self, blog_schema: str) -> None:
        """Test that @primaryKey replaces the injected id."""
        model = normalize_schema(blog_schema).get_model("Comment")

        assert model.partition_key == "postId"
        assert model.sort_keys == ("commentId",)
        assert model.key_fields == ("postId", "commentId")
        assert model.get_field("id") is None

    def test_model_overrides(self) -> None:
        """Test disabling timestamps, subscriptions and mutations."""
        schema = normalize_schema(
            "type Log @model(timestamps: null, subscriptions: null, mutations: null) { line: String }"
        )
        model = schema.get_model("Log")

        assert model.created_at_field is None
        assert model.updated_at_field is None
        assert model.mutations == {}
        assert not model.subscriptions
        assert [f.name for f in model.fields] == ["id", "line"]

    def test_function_bindings(self, blog_schema: str) -> None:
        """Test that @function fields are collected in order."""
        bindings = normalize_schema(blog_schema).function_bindings

        assert len(bindings) == 1
        assert bindings[0].type_name == "Query"
        assert bindings[0].field_name == "echo"
        assert bindings[0].function_names == ("echo-${env}",)

    def test_canonical_text_is_stable(self, public_schema: str) -> None:
        """Test that normalizing the same schema twice gives the same text."""
        assert normalize_schema(public_schema).text == normalize_schema(public_schema).text

    def test_extra_directive_definitions(self) -> None:
        """Test that custom transformer directives validate when declared."""
        sdl = "type Item @model @searchable { name: String }"

        with pytest.raises(SchemaValidationError):
            normalize_schema(sdl)

        schema = normalize_schema(sdl, extra_directive_definitions=["directive @searchable on OBJECT"])
        assert schema.get_model("Item") is not None


class TestNormalizeSchemaErrors:
    """Test cases for schemas that must be rejected."""

    def test_unparseable_schema(self) -> None:
        """Test that syntax errors raise SchemaValidationError."""
        with pytest.raises(SchemaValidationError, match="Unable to parse schema"):
            normalize_schema("type Todo @model {")

    def test_empty_schema(self) -> None:
        """Test that an empty schema is rejected."""
        with pytest.raises(SchemaValidationError, match="empty"):
            normalize_schema("   ")

    def test_auth_without_model(self) -> None:
        """Test that @auth requires @model."""
        with pytest.raises(SchemaValidationError, match="requires @model"):
            normalize_schema("type Todo @auth(rules: [{ allow: public }]) { id: ID! }")

    def test_invalid_provider_for_strategy(self) -> None:
        """Test that owner rules cannot use the API key provider."""
        with pytest.raises(SchemaValidationError, match="not valid for allow: owner"):
            normalize_schema("type Todo @model @auth(rules: [{ allow: owner, provider: apiKey }]) { name: String }")

    def test_unknown_type(self) -> None:
        """Test that references to undefined types fail validation."""
        with pytest.raises(SchemaValidationError, match="Invalid schema"):
            normalize_schema("type Todo @model { tag: Tag }")

    @pytest.mark.parametrize(
        "sdl",
        [
            "type Todo @model @auth(rules: [{ allow: everyone }]) { name: String }",
            "type Todo @model @auth { name: String }",
            'type Todo @model(timestamps: "x") { name: String }',
            "type Query { echo: String @function }",
            "type Query { echo: String @function(name: 3) }",
        ],
    )
    def test_malformed_directive_arguments(self, sdl: str) -> None:
        """Test that bad directive arguments fail validation before extraction."""
        with pytest.raises(SchemaValidationError, match="Invalid schema"):
            normalize_schema(sdl)

    def test_unknown_sort_key_field(self) -> None:
        """Test that sort keys must name fields of the model."""
        with pytest.raises(SchemaValidationError, match="sort key field 'missing'") as exc_info:
            normalize_schema('type Todo @model { pk: ID! @primaryKey(sortKeyFields: ["missing"]) }')

        assert exc_info.value.context == {"model": "Todo", "field": "missing"}

    def test_sort_key_on_injected_timestamp(self) -> None:
        """Test that an injected timestamp field may be used as a sort key."""
        normalized = normalize_schema(
            'type Todo @model { pk: ID! @primaryKey(sortKeyFields: ["createdAt"]) }'
        )

        assert normalized.models[0].sort_keys == ("createdAt",)

    def test_error_carries_cause(self) -> None:
        """Test that the graphql error is kept as the cause."""
        with pytest.raises(SchemaValidationError) as exc_info:
            normalize_schema("type {")

        assert exc_info.value.cause is not None
        assert exc_info.value.to_dict()["error_type"] == "SchemaValidationError"


class TestLoadSchemaText:
    """Test cases for schema inputs."""

    def test_sequence_of_text_and_files(self, tmp_path) -> None:
        """Test that files and strings are concatenated in order."""
        schema_file = tmp_path / "todo.graphql"
        schema_file.write_text("type Todo @model { name: String }\n")

        text = load_schema_text([schema_file, "type Query { ping: String }"])

        assert text.index("type Todo") < text.index("type Query")

    def test_missing_file(self, tmp_path) -> None:
        """Test that unreadable files raise SchemaValidationError."""
        with pytest.raises(SchemaValidationError, match="Unable to read schema file"):
            load_schema_text(tmp_path / "missing.graphql")


class TestPlural:
    """Test cases for list and sync operation naming."""

    @pytest.mark.parametrize(
        "name,expected",
        [("Todo", "Todos"), ("Story", "Stories"), ("Day", "Days"), ("Address", "Addresses"), ("Box", "Boxes")],
    )
    def test_plural(self, name: str, expected: str) -> None:
        """Test English pluralization of model names."""
        assert plural(name) == expected
