'''
    @function: Lambda data sources for existing functions and a `function`
    slot per invocation on the annotated field.
'''
import re
from typing import Dict

import structlog

from ..resource_graph import OperationKind, ResourceGraphBuilder, api_id
from .base import TransformContext, TransformerPhase, TransformerPlugin

logger = structlog.get_logger(__name__)

FUNCTION_STACK = "FunctionDirectiveStack"
FUNCTION_SLOT = "function"

INVOKE_REQUEST_TEMPLATE = """{
  "version": "2018-05-29",
  "operation": "Invoke",
  "payload": {
    "typeName": $util.toJson($ctx.stash.get("typeName")),
    "fieldName": $util.toJson($ctx.stash.get("fieldName")),
    "arguments": $util.toJson($ctx.arguments),
    "identity": $util.toJson($ctx.identity),
    "source": $util.toJson($ctx.source),
    "request": $util.toJson($ctx.request),
    "prev": $util.toJson($ctx.prev)
  }
}"""

INVOKE_RESPONSE_TEMPLATE = """#if( $ctx.error )
  $util.error($ctx.error.message, $ctx.error.type)
#end
$util.toJson($ctx.result)"""


def function_resource_prefix(function_name: str) -> str:
    prefix = re.sub(r"[^A-Za-z0-9]", "", function_name.replace("${env}", ""))
    return prefix[:1].upper() + prefix[1:]


def function_arn(function_name: str) -> Dict:
    """ARN of an existing function; ``${env}`` in the name is the deployment environment."""
    return {
        "Fn::Sub": [
            "arn:${AWS::Partition}:lambda:${AWS::Region}:${AWS::AccountId}:function:" + function_name,
            {"env": {"Ref": "env"}},
        ]
    }


class FunctionTransformer(TransformerPlugin):
    name = "function"
    phase = TransformerPhase.CUSTOM

    def apply_to(self, builder: ResourceGraphBuilder, context: TransformContext) -> None:
        data_sources: Dict[str, str] = {}
        prefixes: Dict[str, str] = {}
        for binding in context.schema.function_bindings:
            pipeline = builder.pipeline(binding.type_name, binding.field_name)
            pipeline.kind = OperationKind.CUSTOM
            pipeline.stack_name = FUNCTION_STACK
            for function_name in binding.function_names:
                if function_name not in data_sources:
                    # one data source per resource prefix
                    prefix = function_resource_prefix(function_name)
                    if prefix in prefixes:
                        raise ValueError(
                            f"functions '{prefixes[prefix]}' and '{function_name}' both map to "
                            f"data source {prefix}LambdaDataSource"
                        )
                    prefixes[prefix] = function_name
                    data_sources[function_name] = self._create_data_source(builder, function_name)
                builder.add_slot(
                    binding.type_name,
                    binding.field_name,
                    FUNCTION_SLOT,
                    INVOKE_REQUEST_TEMPLATE,
                    INVOKE_RESPONSE_TEMPLATE,
                    data_source=data_sources[function_name],
                )
            logger.debug(
                "function_field_bound",
                type_name=binding.type_name,
                field_name=binding.field_name,
                functions=list(binding.function_names),
            )

    def _create_data_source(self, builder: ResourceGraphBuilder, function_name: str) -> str:
        prefix = function_resource_prefix(function_name)
        arn = function_arn(function_name)

        # iam role
        role_id = f"{prefix}LambdaDataSourceServiceRole"
        builder.add_resource(
            FUNCTION_STACK,
            role_id,
            {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "AssumeRolePolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [
                            {
                                "Effect": "Allow",
                                "Principal": {"Service": "appsync.amazonaws.com"},
                                "Action": "sts:AssumeRole",
                            }
                        ],
                    },
                    "Policies": [
                        {
                            "PolicyName": "InvokeLambdaFunction",
                            "PolicyDocument": {
                                "Version": "2012-10-17",
                                "Statement": [
                                    {
                                        "Effect": "Allow",
                                        "Action": ["lambda:InvokeFunction"],
                                        "Resource": arn,
                                    }
                                ],
                            },
                        }
                    ],
                },
            },
        )

        # appsync datasource to lambda
        data_source_id = f"{prefix}LambdaDataSource"
        builder.add_resource(
            FUNCTION_STACK,
            data_source_id,
            {
                "Type": "AWS::AppSync::DataSource",
                "Properties": {
                    "ApiId": api_id(),
                    "Name": data_source_id,
                    "Type": "AWS_LAMBDA",
                    "ServiceRoleArn": {"Fn::GetAtt": [role_id, "Arn"]},
                    "LambdaConfig": {"LambdaFunctionArn": arn},
                },
            },
        )
        return data_source_id
