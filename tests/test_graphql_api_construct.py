"""Synthesis tests for the AmplifyGraphqlApi construct."""

import shutil

import pytest

if shutil.which("node") is None:
    pytest.skip("the CDK runtime needs node", allow_module_level=True)

aws_cdk = pytest.importorskip("aws_cdk")

from aws_cdk import App, Stack, assertions  # noqa: E402

from appsync_transformer.authorization_modes import UserPoolAuthorizationMode  # noqa: E402
from appsync_transformer.exceptions import ConfigValidationError  # noqa: E402
from appsync_transformer.graphql_api_construct import AmplifyGraphqlApi  # noqa: E402


class TestAmplifyGraphqlApi:
    """Test cases for the construct."""

    def test_synthesizes_api(self, owner_schema: str, tmp_path) -> None:
        """Test that the generated templates are included into the stack."""
        app = App()
        stack = Stack(app, "ApiStack")
        api = AmplifyGraphqlApi(
            stack,
            "Api",
            definition=owner_schema,
            authorization_modes=[UserPoolAuthorizationMode(user_pool_id="us-east-1_abc123")],
            environment_name="dev",
            output_directory=str(tmp_path / "api"),
        )
        template = assertions.Template.from_stack(stack)

        template.resource_count_is("AWS::AppSync::GraphQLApi", 1)
        template.resource_count_is("AWS::AppSync::GraphQLSchema", 1)
        assert api.environment_name == "dev"
        assert api.api_key is None
        assert "TodoTable" in api.resources.tables
        assert len(api.get_generated_function_slots()) == 10

    def test_invalid_environment(self, owner_schema: str, tmp_path) -> None:
        """Test that the environment tag is validated at construction."""
        stack = Stack(App(), "ApiStack")

        with pytest.raises(ConfigValidationError):
            AmplifyGraphqlApi(
                stack,
                "Api",
                definition=owner_schema,
                authorization_modes=[UserPoolAuthorizationMode(user_pool_id="us-east-1_abc123")],
                environment_name="staging12",
                output_directory=str(tmp_path / "api"),
            )

        assert not (tmp_path / "api").exists()
