"""Tests for the transform orchestrator and the built-in transformers."""

from typing import Any, Dict

import pytest

from appsync_transformer.authorization_modes import convert_authorization_modes
from appsync_transformer.config import resolve_transform_parameters
from appsync_transformer.conflict_resolution import (
    AutomergeStrategy,
    ConflictResolution,
    convert_to_resolver_config,
)
from appsync_transformer.exceptions import ConfigValidationError, InvalidAuthConfigError, TransformError
from appsync_transformer.orchestrator import API_KEY_LOGICAL_ID, TransformOrchestrator, execute_transform
from appsync_transformer.resolver_manifest import list_generated_slots
from appsync_transformer.resource_graph import ResourceGraph
from appsync_transformer.schema_normalizer import normalize_schema
from appsync_transformer.transformers import ModelTransformer, TransformerPhase, TransformerPlugin
from appsync_transformer.user_defined_slots import parse_user_defined_slots


def transform(sdl: str, modes, slots: Dict[str, str] = None, **kwargs: Any) -> ResourceGraph:
    schema = normalize_schema(sdl)
    auth = convert_authorization_modes(modes, requires_auth=schema.has_auth_directives)
    return execute_transform(
        schema,
        parse_user_defined_slots(slots or {}),
        auth.auth_config,
        admin_roles=auth.admin_roles,
        identity_pool_id=auth.identity_pool_id,
        **kwargs,
    )


class ClaimingTransformer(TransformerPlugin):
    """Custom plugin that writes a resolver the model transformer already owns."""

    name = "claiming"

    def apply_to(self, builder, context) -> None:
        builder.add_resolver_code("Query.getTodo.req.vtl", "{}")


class TestPublicModel:
    """Test cases for a single public model behind an API key."""

    def test_stacks_and_resolvers(self, public_schema: str, api_key_modes) -> None:
        """Test that one model produces one stack and its resolver templates."""
        graph = transform(public_schema, api_key_modes)

        assert set(graph.stacks) == {"Todo"}
        assert "Query.getTodo.req.vtl" in graph.resolvers
        assert "Query.getTodo.res.vtl" in graph.resolvers
        assert "Mutation.deleteTodo.req.vtl" in graph.resolvers
        assert "Query.syncTodos.req.vtl" not in graph.resolvers
        assert list_generated_slots(graph.resolvers) == []

    def test_root_api_resources(self, public_schema: str, api_key_modes) -> None:
        """Test the API, schema, key and nested stack in the root template."""
        root = transform(public_schema, api_key_modes).root_stack
        resources = root["Resources"]

        assert resources["GraphQLAPI"]["Properties"]["AuthenticationType"] == "API_KEY"
        assert resources[API_KEY_LOGICAL_ID]["Condition"] == "ShouldCreateAPIKey"
        assert resources["Todo"]["Type"] == "AWS::CloudFormation::Stack"
        assert "GraphQLSchema" in resources["Todo"]["DependsOn"]
        assert {"GraphQLAPIIdOutput", "GraphQLAPIEndpointOutput", "GraphQLAPIKeyOutput"} <= set(root["Outputs"])

    def test_model_stack_contents(self, public_schema: str, api_key_modes) -> None:
        """Test the table, role and data source placed in the model stack."""
        stack = transform(public_schema, api_key_modes).stacks["Todo"]
        resources = stack["Resources"]

        assert resources["TodoTable"]["Type"] == "AWS::DynamoDB::Table"
        assert resources["TodoTable"]["Properties"]["KeySchema"] == [{"AttributeName": "id", "KeyType": "HASH"}]
        assert resources["TodoDataSource"]["Properties"]["DynamoDBConfig"]["TableName"] == {"Ref": "TodoTable"}
        assert resources["QuerygetTodoResolver"]["Properties"]["Kind"] == "PIPELINE"
        assert stack["Parameters"]["refGraphQLAPIApiId"] == {"Type": "String"}

    def test_schema_output(self, public_schema: str, api_key_modes) -> None:
        """Test that generated operations are in the deployed schema and directives are not."""
        schema = transform(public_schema, api_key_modes).schema

        assert "getTodo(id: ID!): Todo" in schema
        assert "input CreateTodoInput" in schema
        assert "type ModelTodoConnection" in schema
        assert "onCreateTodo: Todo" in schema
        assert "@model" not in schema
        assert "@auth" not in schema

    def test_output_is_deterministic(self, public_schema: str, api_key_modes) -> None:
        """Test that the same inputs serialize to the same graph."""
        assert transform(public_schema, api_key_modes).serialize() == transform(
            public_schema, api_key_modes
        ).serialize()

    def test_stack_mapping(self, public_schema: str, api_key_modes) -> None:
        """Test that a mapped logical id lands in the named stack."""
        graph = transform(public_schema, api_key_modes, stack_mapping={"TodoTable": "CustomStack"})

        assert "TodoTable" in graph.stacks["CustomStack"]["Resources"]
        assert "TodoTable" not in graph.stacks["Todo"]["Resources"]
        assert graph.stacks["Todo"]["Parameters"]["refTodoTableArn"] == {"Type": "String"}
        assert "CustomStack" in graph.root_stack["Resources"]["Todo"]["DependsOn"]

    def test_suppressed_api_key(self, public_schema: str, api_key_modes) -> None:
        """Test that no key resource is created when suppressed."""
        graph = transform(
            public_schema,
            api_key_modes,
            transform_parameters=resolve_transform_parameters({"suppress_api_key_generation": True}),
        )

        assert API_KEY_LOGICAL_ID not in graph.root_stack["Resources"]
        assert "APIKeyExpirationEpoch" not in graph.root_stack["Parameters"]


class TestOwnerAuth:
    """Test cases for owner-based authorization."""

    def test_auth_slots(self, owner_schema: str, user_pool_modes) -> None:
        """Test that every model operation gets an auth slot."""
        graph = transform(owner_schema, user_pool_modes)
        slots = list_generated_slots(graph.resolvers)

        assert len(slots) == 10
        assert {slot.slot_name for slot in slots} == {"auth"}
        assert "Query.listTodos.auth.1.req.vtl" in graph.resolvers
        assert "ownerIdentity0" in graph.resolvers["Mutation.createTodo.auth.1.req.vtl"]

    def test_auth_runs_before_data(self, owner_schema: str, user_pool_modes) -> None:
        """Test the auth function precedes the data function in the pipeline."""
        stack = transform(owner_schema, user_pool_modes).stacks["Todo"]
        functions = stack["Resources"]["QuerygetTodoResolver"]["Properties"]["PipelineConfig"]["Functions"]

        assert [ref["Fn::GetAtt"][0] for ref in functions] == [
            "QuerygetTodoauth1Function",
            "QuerygetTodoDataResolverFn",
        ]

    def test_user_slot_overrides_auth(self, owner_schema: str, user_pool_modes) -> None:
        """Test that user code wins over the generated auth template."""
        graph = transform(owner_schema, user_pool_modes, slots={"Query.getTodo.auth.1.req.vtl": "custom"})

        assert graph.resolvers["Query.getTodo.auth.1.req.vtl"] == "custom"
        assert graph.resolvers["Query.listTodos.auth.1.req.vtl"] != "custom"

    def test_invalid_user_slot(self, owner_schema: str, user_pool_modes) -> None:
        """Test that a slot name from the wrong pipeline kind is rejected."""
        with pytest.raises(TransformError) as exc_info:
            transform(owner_schema, user_pool_modes, slots={"Query.getTodo.preUpdate.1.req.vtl": "x"})

        assert exc_info.value.plugin_name == "user-defined-slots"

    def test_unconfigured_provider(self, owner_schema: str, api_key_modes) -> None:
        """Test that rules need their provider configured."""
        with pytest.raises(TransformError) as exc_info:
            transform(owner_schema, api_key_modes)

        assert exc_info.value.plugin_name == "auth"
        assert isinstance(exc_info.value.cause, InvalidAuthConfigError)

    def test_multi_provider_directives(self, blog_schema: str, mixed_modes) -> None:
        """Test that provider directives are added with several modes."""
        schema = transform(blog_schema, mixed_modes).schema

        assert "type Post @aws_cognito_user_pools @aws_api_key" in schema


class TestConflictResolution:
    """Test cases for versioned models."""

    def test_sync_resources(self, public_schema: str, api_key_modes) -> None:
        """Test the datastore table, sync query and sync config."""
        graph = transform(
            public_schema,
            api_key_modes,
            resolver_config=convert_to_resolver_config(ConflictResolution(project=AutomergeStrategy())),
        )
        resources = graph.stacks["Todo"]["Resources"]

        assert "AmplifyDataStoreTable" in graph.stacks["AmplifyDataStore"]["Resources"]
        assert "Query.syncTodos.req.vtl" in graph.resolvers
        assert resources["QuerygetTodoDataResolverFn"]["Properties"]["SyncConfig"] == {
            "ConflictDetection": "VERSION",
            "ConflictHandler": "AUTOMERGE",
        }
        assert resources["TodoDataSource"]["Properties"]["DynamoDBConfig"]["Versioned"] is True
        assert "_version: Int!" in graph.schema


class TestFunctionTransformer:
    """Test cases for @function fields."""

    def test_function_slot(self, blog_schema: str, mixed_modes) -> None:
        """Test the data source and function slot for an existing Lambda."""
        graph = transform(blog_schema, mixed_modes)
        resources = graph.stacks["FunctionDirectiveStack"]["Resources"]

        assert "Query.echo.function.1.req.vtl" in graph.resolvers
        assert resources["EchoLambdaDataSource"]["Properties"]["Type"] == "AWS_LAMBDA"
        assert resources["QueryechoResolver"]["Properties"]["TypeName"] == "Query"

    def test_names_with_same_resource_prefix(self, api_key_modes) -> None:
        """Test that two functions cannot share one data source id."""
        sdl = 'type Query { a: String @function(name: "echo") b: String @function(name: "echo-${env}") }'

        with pytest.raises(TransformError) as exc_info:
            transform(sdl, api_key_modes)

        assert exc_info.value.plugin_name == "function"
        assert "EchoLambdaDataSource" in str(exc_info.value)

    def test_same_function_on_two_fields(self, api_key_modes) -> None:
        """Test that a function reused across fields gets a single data source."""
        sdl = 'type Query { a: String @function(name: "echo") b: String @function(name: "echo") }'
        graph = transform(sdl, api_key_modes)
        resources = graph.stacks["FunctionDirectiveStack"]["Resources"]

        assert [rid for rid in resources if rid.endswith("LambdaDataSource")] == ["EchoLambdaDataSource"]

    def test_composite_key_model(self, blog_schema: str, mixed_modes) -> None:
        """Test the key schema of a model with a sort key."""
        graph = transform(blog_schema, mixed_modes)
        key_schema = graph.stacks["Comment"]["Resources"]["CommentTable"]["Properties"]["KeySchema"]

        assert key_schema == [
            {"AttributeName": "postId", "KeyType": "HASH"},
            {"AttributeName": "commentId", "KeyType": "RANGE"},
        ]


class TestCustomTransformers:
    """Test cases for plugin ordering and conflicts."""

    def test_conflicting_plugin(self, public_schema: str, api_key_modes) -> None:
        """Test that a plugin redefining another plugin's resolver fails."""
        with pytest.raises(TransformError) as exc_info:
            transform(public_schema, api_key_modes, custom_transformers=[ClaimingTransformer()])

        assert exc_info.value.plugin_name == "claiming"
        assert "'model'" in str(exc_info.value)

    def test_duplicate_names(self) -> None:
        """Test that plugin names must be unique."""
        with pytest.raises(ConfigValidationError):
            TransformOrchestrator([ModelTransformer(), ModelTransformer()])

    def test_custom_plugins_run_last(self) -> None:
        """Test that custom plugins follow the built-ins."""

        class Early(TransformerPlugin):
            name = "early"
            phase = TransformerPhase.AUTH

            def apply_to(self, builder, context) -> None:
                pass

        orchestrator = TransformOrchestrator([ModelTransformer()], [Early()])

        assert [plugin.name for plugin in orchestrator.transformers] == ["model", "early"]
