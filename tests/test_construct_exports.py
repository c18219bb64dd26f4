"""Tests for mapping generated templates onto included resource handles."""

import pytest

from appsync_transformer.authorization_modes import convert_authorization_modes
from appsync_transformer.construct_exports import generate_construct_exports
from appsync_transformer.exceptions import ExportMappingError
from appsync_transformer.orchestrator import execute_transform
from appsync_transformer.resource_graph import ROOT_STACK_NAME, ResourceGraph, empty_template
from appsync_transformer.schema_normalizer import normalize_schema


@pytest.fixture
def graph(blog_schema: str, mixed_modes) -> ResourceGraph:
    schema = normalize_schema(blog_schema)
    auth = convert_authorization_modes(mixed_modes, requires_auth=True)
    return execute_transform(schema, {}, auth.auth_config)


def api_root():
    root = empty_template()
    root["Resources"]["GraphQLAPI"] = {"Type": "AWS::AppSync::GraphQLApi", "Properties": {}}
    root["Resources"]["GraphQLSchema"] = {"Type": "AWS::AppSync::GraphQLSchema", "Properties": {}}
    return root


class TestGenerateConstructExports:
    """Test cases for generate_construct_exports."""

    def test_typed_groups(self, graph: ResourceGraph, fake_include) -> None:
        """Test that handles are grouped by resource type."""
        include = fake_include(graph.root_stack, graph.stacks)
        resources = generate_construct_exports(graph.root_stack, graph.stacks, include)

        assert resources.api.logical_id == "GraphQLAPI"
        assert resources.schema.logical_id == "GraphQLSchema"
        assert resources.api_key.logical_id == "GraphQLAPIDefaultApiKey"
        assert {"PostTable", "CommentTable"} <= set(resources.tables)
        assert "QuerygetPostResolver" in resources.resolvers
        assert "QuerygetPostauth1Function" in resources.appsync_functions
        assert {"PostDataSource", "EchoLambdaDataSource", "NoneDataSource"} <= set(resources.data_sources)
        assert "PostIAMRole" in resources.roles

    def test_stacks_include_root(self, graph: ResourceGraph, fake_include) -> None:
        """Test the per-stack view, root template included."""
        include = fake_include(graph.root_stack, graph.stacks)
        resources = generate_construct_exports(graph.root_stack, graph.stacks, include)

        assert set(resources.stacks) == {ROOT_STACK_NAME} | set(graph.stacks)
        assert "Post" not in resources.stacks[ROOT_STACK_NAME]
        assert set(resources.stacks["Comment"]) == set(graph.stacks["Comment"]["Resources"])
        assert set(resources.nested_stacks) == set(graph.stacks)

    def test_missing_nested_resource(self, graph: ResourceGraph, fake_include) -> None:
        """Test that a logical id absent from the include fails."""
        include = fake_include(graph.root_stack, graph.stacks)
        del include.nested["Post"].included_template.handles["PostTable"]

        with pytest.raises(ExportMappingError) as exc_info:
            generate_construct_exports(graph.root_stack, graph.stacks, include)

        assert exc_info.value.stack_name == "Post"
        assert exc_info.value.logical_id == "PostTable"
        assert isinstance(exc_info.value.cause, KeyError)

    def test_missing_nested_stack(self, graph: ResourceGraph, fake_include) -> None:
        """Test that a nested stack absent from the include fails."""
        stacks = dict(graph.stacks)
        include = fake_include(graph.root_stack, {name: t for name, t in stacks.items() if name != "Comment"})

        with pytest.raises(ExportMappingError) as exc_info:
            generate_construct_exports(graph.root_stack, stacks, include)

        assert exc_info.value.logical_id == "Comment"

    def test_duplicate_logical_id(self, fake_include) -> None:
        """Test that one logical id in two stacks of the same group fails."""
        root = api_root()
        table = {"Type": "AWS::DynamoDB::Table", "Properties": {}}
        stacks = {"A": {"Resources": {"Table": table}}, "B": {"Resources": {"Table": table}}}

        with pytest.raises(ExportMappingError, match="more than one stack"):
            generate_construct_exports(root, stacks, fake_include(root, stacks))

    def test_missing_api(self, fake_include) -> None:
        """Test that templates without an API resource fail."""
        root = empty_template()
        root["Resources"]["GraphQLSchema"] = {"Type": "AWS::AppSync::GraphQLSchema", "Properties": {}}

        with pytest.raises(ExportMappingError) as exc_info:
            generate_construct_exports(root, {}, fake_include(root, {}))

        assert exc_info.value.logical_id == "api"

    def test_unknown_types_are_additional(self, fake_include) -> None:
        """Test that unclassified resources land in additional_resources."""
        root = api_root()
        stacks = {"Topics": {"Resources": {"Topic": {"Type": "AWS::SNS::Topic", "Properties": {}}}}}

        resources = generate_construct_exports(root, stacks, fake_include(root, stacks))

        assert resources.api_key is None
        assert list(resources.additional_resources) == ["Topic"]
