from typing import Any, Dict

import pytest

from appsync_transformer.authorization_modes import (
    ApiKeyAuthorizationMode,
    UserPoolAuthorizationMode,
)

# ============================================================================
# Schemas
# ============================================================================

TODO_PUBLIC_SCHEMA = """
type Todo @model @auth(rules: [{ allow: public }]) {
  name: String!
  description: String
}
"""

TODO_OWNER_SCHEMA = """
type Todo @model @auth(rules: [{ allow: owner }]) {
  name: String!
  priority: Int
}
"""

BLOG_SCHEMA = """
type Post
  @model
  @auth(rules: [
    { allow: owner }
    { allow: public, operations: [read] }
  ]) {
  title: String!
  content: String
}

type Comment @model {
  postId: ID! @primaryKey(sortKeyFields: ["commentId"])
  commentId: ID!
  content: String!
}

type Query {
  echo(message: String!): String @function(name: "echo-${env}")
}
"""


@pytest.fixture
def public_schema() -> str:
    return TODO_PUBLIC_SCHEMA


@pytest.fixture
def owner_schema() -> str:
    return TODO_OWNER_SCHEMA


@pytest.fixture
def blog_schema() -> str:
    return BLOG_SCHEMA


@pytest.fixture
def api_key_modes():
    return [ApiKeyAuthorizationMode(default=True)]


@pytest.fixture
def user_pool_modes():
    return [UserPoolAuthorizationMode(user_pool_id="us-east-1_abc123", default=True)]


@pytest.fixture
def mixed_modes():
    return [
        UserPoolAuthorizationMode(user_pool_id="us-east-1_abc123", default=True),
        ApiKeyAuthorizationMode(expires_days=30),
    ]


# ============================================================================
# Template include fakes
# ============================================================================


class FakeHandle:
    """Stands in for an L1 resource returned by a template include."""

    def __init__(self, logical_id: str, resource_type: str) -> None:
        self.logical_id = logical_id
        self.cfn_resource_type = resource_type


class FakeIncludedTemplate:
    def __init__(self, template: Dict[str, Any]) -> None:
        self.handles = {
            logical_id: FakeHandle(logical_id, resource["Type"])
            for logical_id, resource in template["Resources"].items()
        }

    def get_resource(self, logical_id: str) -> FakeHandle:
        return self.handles[logical_id]


class FakeNestedStack:
    def __init__(self, template: Dict[str, Any]) -> None:
        self.included_template = FakeIncludedTemplate(template)


class FakeInclude(FakeIncludedTemplate):
    """Mimics ``CfnInclude.get_resource`` and ``get_nested_stack``."""

    def __init__(self, root_stack: Dict[str, Any], stacks: Dict[str, Dict[str, Any]]) -> None:
        super().__init__(root_stack)
        self.nested = {name: FakeNestedStack(template) for name, template in stacks.items()}

    def get_nested_stack(self, name: str) -> FakeNestedStack:
        return self.nested[name]


@pytest.fixture
def fake_include():
    return FakeInclude
