'''
    @model: one stack per model with its DynamoDB table, data source role and
    data source, plus CRUD, list and (with conflict resolution) sync resolvers.
'''
from typing import Any, Dict, List, Optional, Tuple

import structlog

from ..conflict_resolution import SyncConfig
from ..resource_graph import OperationKind, PipelineFunction, ResourceGraphBuilder, api_id
from ..schema_normalizer import ModelDefinition, ModelField
from .base import TransformContext, TransformerPhase, TransformerPlugin

logger = structlog.get_logger(__name__)

DATASTORE_STACK = "AmplifyDataStore"
DATASTORE_TABLE = "AmplifyDataStoreTable"

FILTER_INPUT_TYPES = {
    "ID": "ModelIDInput",
    "String": "ModelStringInput",
    "Int": "ModelIntInput",
    "Float": "ModelFloatInput",
    "Boolean": "ModelBooleanInput",
    "AWSDate": "ModelStringInput",
    "AWSTime": "ModelStringInput",
    "AWSDateTime": "ModelStringInput",
    "AWSTimestamp": "ModelIntInput",
    "AWSEmail": "ModelStringInput",
    "AWSJSON": "ModelStringInput",
    "AWSURL": "ModelStringInput",
    "AWSPhone": "ModelStringInput",
    "AWSIPAddress": "ModelStringInput",
}

FILTER_INPUT_DEFINITIONS = {
    "ModelIDInput": "input ModelIDInput { ne: ID eq: ID le: ID lt: ID ge: ID gt: ID contains: ID notContains: ID between: [ID] beginsWith: ID attributeExists: Boolean }",
    "ModelStringInput": "input ModelStringInput { ne: String eq: String le: String lt: String ge: String gt: String contains: String notContains: String between: [String] beginsWith: String attributeExists: Boolean }",
    "ModelIntInput": "input ModelIntInput { ne: Int eq: Int le: Int lt: Int ge: Int gt: Int between: [Int] attributeExists: Boolean }",
    "ModelFloatInput": "input ModelFloatInput { ne: Float eq: Float le: Float lt: Float ge: Float gt: Float between: [Float] attributeExists: Boolean }",
    "ModelBooleanInput": "input ModelBooleanInput { ne: Boolean eq: Boolean attributeExists: Boolean }",
}

NUMERIC_TYPES = ("Int", "Float", "AWSTimestamp")

RESPONSE_TEMPLATE = """#if( $ctx.error )
  $util.error($ctx.error.message, $ctx.error.type)
#else
  $util.toJson($ctx.result)
#end"""

GET_RESPONSE_TEMPLATE = """#if( $ctx.error )
  $util.error($ctx.error.message, $ctx.error.type)
#end
#if( !$util.isNullOrEmpty($ctx.stash.authFilter) && !$util.isNull($ctx.result) )
  #set( $isAuthorized = false )
  #foreach( $entry in $ctx.stash.authFilter )
    #foreach( $attribute in $entry.keySet() )
      #if( $ctx.result[$attribute] == $entry[$attribute].eq )
        #set( $isAuthorized = true )
      #end
    #end
  #end
  #if( !$isAuthorized )
    $util.unauthorized()
  #end
#end
$util.toJson($ctx.result)"""

AUTH_CONDITION = """#if( !$util.isNullOrEmpty($ctx.stash.authFilter) )
  #set( $authCondition = $util.parseJson($util.transform.toDynamoDBConditionExpression({ "or": $ctx.stash.authFilter })) )
  #set( $condition = {
  "expression": "($condition.expression) AND ($authCondition.expression)",
  "expressionNames": $condition.expressionNames,
  "expressionValues": $util.defaultIfNull($authCondition.expressionValues, {})
} )
  $util.qr($condition.expressionNames.putAll($authCondition.expressionNames))
#end"""

FILTER_TEMPLATE = """#set( $filter = $util.defaultIfNull($ctx.args.filter, {}) )
#if( !$util.isNullOrEmpty($ctx.stash.authFilter) )
  #if( $util.isNullOrEmpty($filter) )
    #set( $filter = { "or": $ctx.stash.authFilter } )
  #else
    #set( $filter = { "and": [$filter, { "or": $ctx.stash.authFilter }] } )
  #end
#end
#if( !$util.isNullOrEmpty($filter) )
  $util.qr($request.put("filter", $util.parseJson($util.transform.toDynamoDBFilterExpression($filter))))
#end"""


def _key_values(model: ModelDefinition, source: str) -> List[Tuple[str, str]]:
    """DynamoDB key attribute names and VTL value expressions for a model."""
    keys = [(model.partition_key, f"$util.dynamodb.toDynamoDB({source}.{model.partition_key})")]
    if len(model.sort_keys) == 1:
        sort_key = model.sort_keys[0]
        keys.append((sort_key, f"$util.dynamodb.toDynamoDB({source}.{sort_key})"))
    elif model.sort_keys:
        composite = "#".join("${" + f"{source[1:]}.{k}" + "}" for k in model.sort_keys)
        keys.append(("#".join(model.sort_keys), f'$util.dynamodb.toDynamoDB("{composite}")'))
    return keys


def _key_template(model: ModelDefinition, source: str) -> str:
    lines = ["#set( $key = {} )"]
    for attribute, value in _key_values(model, source):
        lines.append(f'$util.qr($key.put("{attribute}", {value}))')
    return "\n".join(lines)


def _version_template(versioned: bool) -> str:
    if not versioned:
        return ""
    return '\n$util.qr($request.put("_version", $util.defaultIfNull($ctx.args.input["_version"], 0)))'


def get_request_template(model: ModelDefinition) -> str:
    return f"""{_key_template(model, "$ctx.args")}
#set( $request = {{
  "version": "2018-05-29",
  "operation": "GetItem",
  "key": $key
}} )
$util.toJson($request)"""


def list_request_template(model: ModelDefinition) -> str:
    return f"""#set( $limit = $util.defaultIfNull($ctx.args.limit, 100) )
#set( $request = {{
  "version": "2018-05-29",
  "operation": "Scan",
  "limit": $limit
}} )
#if( $ctx.args.nextToken )
  $util.qr($request.put("nextToken", $ctx.args.nextToken))
#end
{FILTER_TEMPLATE}
$util.toJson($request)"""


def sync_request_template(model: ModelDefinition) -> str:
    return f"""#set( $request = {{
  "version": "2018-05-29",
  "operation": "Sync",
  "limit": $util.defaultIfNull($ctx.args.limit, 100)
}} )
#if( $ctx.args.nextToken )
  $util.qr($request.put("nextToken", $ctx.args.nextToken))
#end
#if( $ctx.args.lastSync )
  $util.qr($request.put("lastSync", $ctx.args.lastSync))
#end
{FILTER_TEMPLATE}
$util.toJson($request)"""


def create_request_template(model: ModelDefinition) -> str:
    timestamps = []
    for timestamp in (model.created_at_field, model.updated_at_field):
        if timestamp:
            timestamps.append(
                f'$util.qr($input.put("{timestamp}", $util.defaultIfNull($input.{timestamp}, $now)))'
            )
    id_default = ""
    if model.partition_key == "id":
        id_default = '\n$util.qr($input.put("id", $util.defaultIfNull($input.id, $util.autoId())))'
    key_names = ", ".join(f'"#{attribute}": "{attribute}"' for attribute, _ in _key_values(model, ""))
    key_checks = " AND ".join(f"attribute_not_exists(#{attribute})" for attribute, _ in _key_values(model, ""))
    return f"""#set( $input = $util.defaultIfNull($ctx.args.input, {{}}) )
#set( $now = $util.time.nowISO8601() ){id_default}
{chr(10).join(timestamps)}
$util.qr($input.put("__typename", "{model.name}"))
{_key_template(model, "$input")}
#set( $condition = {{
  "expression": "{key_checks}",
  "expressionNames": {{ {key_names} }}
}} )
#set( $request = {{
  "version": "2018-05-29",
  "operation": "PutItem",
  "key": $key,
  "attributeValues": $util.dynamodb.toMapValues($input),
  "condition": $condition
}} )
$util.toJson($request)"""


def update_request_template(model: ModelDefinition, versioned: bool) -> str:
    key_fields = ", ".join(f'"{attribute}"' for attribute in model.key_fields)
    updated_at = ""
    if model.updated_at_field:
        updated_at = (
            f'\n$util.qr($input.put("{model.updated_at_field}", '
            f"$util.defaultIfNull($input.{model.updated_at_field}, $util.time.nowISO8601())))"
        )
    key_names = ", ".join(f'"#{attribute}": "{attribute}"' for attribute, _ in _key_values(model, ""))
    key_checks = " AND ".join(f"attribute_exists(#{attribute})" for attribute, _ in _key_values(model, ""))
    return f"""#set( $input = $util.defaultIfNull($ctx.args.input, {{}}) ){updated_at}
#set( $keyFields = [{key_fields}, "_version"] )
#set( $expNames = {{}} )
#set( $expValues = {{}} )
#set( $expression = "" )
#foreach( $entry in $input.entrySet() )
  #if( !$keyFields.contains($entry.key) )
    #if( !$util.isNullOrEmpty($expression) )
      #set( $expression = "$expression," )
    #end
    #set( $expression = "$expression #$entry.key = :$entry.key" )
    $util.qr($expNames.put("#$entry.key", "$entry.key"))
    $util.qr($expValues.put(":$entry.key", $util.dynamodb.toDynamoDB($entry.value)))
  #end
#end
{_key_template(model, "$input")}
#set( $condition = {{
  "expression": "{key_checks}",
  "expressionNames": {{ {key_names} }}
}} )
{AUTH_CONDITION}
#set( $request = {{
  "version": "2018-05-29",
  "operation": "UpdateItem",
  "key": $key,
  "update": {{
    "expression": "SET $expression",
    "expressionNames": $expNames,
    "expressionValues": $expValues
  }},
  "condition": $condition
}} ){_version_template(versioned)}
$util.toJson($request)"""


def delete_request_template(model: ModelDefinition, versioned: bool) -> str:
    key_names = ", ".join(f'"#{attribute}": "{attribute}"' for attribute, _ in _key_values(model, ""))
    key_checks = " AND ".join(f"attribute_exists(#{attribute})" for attribute, _ in _key_values(model, ""))
    return f"""#set( $input = $util.defaultIfNull($ctx.args.input, {{}}) )
{_key_template(model, "$input")}
#set( $condition = {{
  "expression": "{key_checks}",
  "expressionNames": {{ {key_names} }}
}} )
{AUTH_CONDITION}
#set( $request = {{
  "version": "2018-05-29",
  "operation": "DeleteItem",
  "key": $key,
  "condition": $condition
}} ){_version_template(versioned)}
$util.toJson($request)"""


class ModelTransformer(TransformerPlugin):
    name = "model"
    phase = TransformerPhase.MODEL

    def apply_to(self, builder: ResourceGraphBuilder, context: TransformContext) -> None:
        object_types = {node.name.value for node in context.schema.object_types()}
        filter_inputs: List[str] = []
        for model in context.schema.models:
            sync_config = (
                context.resolver_config.for_model(model.name) if context.resolver_config else None
            )
            if sync_config is not None and builder.get_resource(DATASTORE_TABLE) is None:
                self._create_datastore_table(builder)

            stack_name = model.name
            table_id = self._create_table(builder, context, model, stack_name, sync_config)
            data_source = self._create_data_source(builder, model, stack_name, table_id, sync_config)
            self._create_resolvers(builder, model, stack_name, data_source, sync_config)
            self._extend_schema(builder, model, object_types, sync_config, filter_inputs)

            if context.transform_parameters.enable_transformer_cfn_outputs:
                self._create_outputs(builder, model, table_id, data_source)
            logger.debug("model_transformed", model=model.name, stack=stack_name, versioned=bool(sync_config))

        for input_name in filter_inputs:
            builder.add_schema_definition(FILTER_INPUT_DEFINITIONS[input_name])

    def _attribute_type(self, model: ModelDefinition, attribute: str) -> str:
        model_field = model.get_field(attribute)
        return "N" if model_field is not None and model_field.type_name in NUMERIC_TYPES else "S"

    def _create_table(
        self,
        builder: ResourceGraphBuilder,
        context: TransformContext,
        model: ModelDefinition,
        stack_name: str,
        sync_config: Optional[SyncConfig],
    ) -> str:
        table_id = f"{model.name}Table"
        key_schema = []
        attribute_definitions = []
        for position, (attribute, _) in enumerate(_key_values(model, "")):
            key_schema.append({"AttributeName": attribute, "KeyType": "HASH" if position == 0 else "RANGE"})
            attribute_definitions.append(
                {"AttributeName": attribute, "AttributeType": self._attribute_type(model, attribute)}
            )

        properties: Dict[str, Any] = {
            "TableName": {"Fn::Join": ["-", [model.name, api_id(), {"Ref": "env"}]]},
            "KeySchema": key_schema,
            "AttributeDefinitions": attribute_definitions,
            "BillingMode": "PAY_PER_REQUEST",
            "StreamSpecification": {"StreamViewType": "NEW_AND_OLD_IMAGES"},
            "SSESpecification": {"SSEEnabled": True},
            "PointInTimeRecoverySpecification": {
                "PointInTimeRecoveryEnabled": context.transform_parameters.point_in_time_recovery_enabled
            },
            "TableClass": "STANDARD",
        }
        if sync_config is not None:
            properties["TimeToLiveSpecification"] = {"AttributeName": "_ttl", "Enabled": True}

        builder.add_resource(
            stack_name,
            table_id,
            {
                "Type": "AWS::DynamoDB::Table",
                "Properties": properties,
                "UpdateReplacePolicy": "Delete",
                "DeletionPolicy": "Delete",
            },
        )
        return table_id

    def _create_datastore_table(self, builder: ResourceGraphBuilder) -> None:
        builder.add_resource(
            DATASTORE_STACK,
            DATASTORE_TABLE,
            {
                "Type": "AWS::DynamoDB::Table",
                "Properties": {
                    "TableName": {"Fn::Join": ["-", ["AmplifyDataStore", api_id(), {"Ref": "env"}]]},
                    "KeySchema": [
                        {"AttributeName": "ds_pk", "KeyType": "HASH"},
                        {"AttributeName": "ds_sk", "KeyType": "RANGE"},
                    ],
                    "AttributeDefinitions": [
                        {"AttributeName": "ds_pk", "AttributeType": "S"},
                        {"AttributeName": "ds_sk", "AttributeType": "S"},
                    ],
                    "BillingMode": "PAY_PER_REQUEST",
                    "TimeToLiveSpecification": {"AttributeName": "_ttl", "Enabled": True},
                },
                "UpdateReplacePolicy": "Delete",
                "DeletionPolicy": "Delete",
            },
        )

    def _create_data_source(
        self,
        builder: ResourceGraphBuilder,
        model: ModelDefinition,
        stack_name: str,
        table_id: str,
        sync_config: Optional[SyncConfig],
    ) -> str:
        table_arn = {"Fn::GetAtt": [table_id, "Arn"]}
        # iam policy for dynamodb
        statements: List[Dict[str, Any]] = [
            {
                "Effect": "Allow",
                "Action": [
                    "dynamodb:BatchGetItem",
                    "dynamodb:BatchWriteItem",
                    "dynamodb:PutItem",
                    "dynamodb:DeleteItem",
                    "dynamodb:GetItem",
                    "dynamodb:Scan",
                    "dynamodb:Query",
                    "dynamodb:UpdateItem",
                    "dynamodb:ConditionCheckItem",
                    "dynamodb:DescribeTable",
                    "dynamodb:GetRecords",
                    "dynamodb:GetShardIterator",
                ],
                "Resource": [table_arn, {"Fn::Join": ["/", [table_arn, "*"]]}],
            }
        ]
        if sync_config is not None:
            datastore_arn = {"Fn::GetAtt": [DATASTORE_TABLE, "Arn"]}
            statements.append(
                {
                    "Effect": "Allow",
                    "Action": [
                        "dynamodb:GetItem",
                        "dynamodb:PutItem",
                        "dynamodb:DeleteItem",
                        "dynamodb:UpdateItem",
                        "dynamodb:Query",
                        "dynamodb:Scan",
                    ],
                    "Resource": [datastore_arn, {"Fn::Join": ["/", [datastore_arn, "*"]]}],
                }
            )
            if sync_config.lambda_conflict_handler_arn:
                statements.append(
                    {
                        "Effect": "Allow",
                        "Action": ["lambda:InvokeFunction"],
                        "Resource": sync_config.lambda_conflict_handler_arn,
                    }
                )

        # iam role
        role_id = f"{model.name}IAMRole"
        builder.add_resource(
            stack_name,
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
                            "PolicyName": "DynamoDBAccess",
                            "PolicyDocument": {"Version": "2012-10-17", "Statement": statements},
                        }
                    ],
                },
            },
        )

        # appsync datasource to dynamodb
        dynamodb_config: Dict[str, Any] = {
            "AwsRegion": {"Ref": "AWS::Region"},
            "TableName": {"Ref": table_id},
        }
        if sync_config is not None:
            dynamodb_config["Versioned"] = True
            dynamodb_config["DeltaSyncConfig"] = {
                "BaseTableTTL": "43200",
                "DeltaSyncTableName": {"Ref": DATASTORE_TABLE},
                "DeltaSyncTableTTL": "30",
            }
        data_source_id = f"{model.name}DataSource"
        builder.add_resource(
            stack_name,
            data_source_id,
            {
                "Type": "AWS::AppSync::DataSource",
                "Properties": {
                    "ApiId": api_id(),
                    "Name": f"{model.name}Table",
                    "Type": "AMAZON_DYNAMODB",
                    "ServiceRoleArn": {"Fn::GetAtt": [role_id, "Arn"]},
                    "DynamoDBConfig": dynamodb_config,
                },
            },
        )
        return data_source_id

    def _create_resolvers(
        self,
        builder: ResourceGraphBuilder,
        model: ModelDefinition,
        stack_name: str,
        data_source: str,
        sync_config: Optional[SyncConfig],
    ) -> None:
        versioned = sync_config is not None
        templates = []
        queries = dict(model.queries)
        if not versioned:
            queries.pop("sync", None)
        for operation, field_name in queries.items():
            request = {
                "get": get_request_template,
                "list": list_request_template,
                "sync": sync_request_template,
            }[operation](model)
            response = GET_RESPONSE_TEMPLATE if operation == "get" else RESPONSE_TEMPLATE
            templates.append(("Query", field_name, OperationKind.QUERY, request, response))
        for operation, field_name in model.mutations.items():
            if operation == "create":
                request = create_request_template(model)
            elif operation == "update":
                request = update_request_template(model, versioned)
            else:
                request = delete_request_template(model, versioned)
            templates.append(("Mutation", field_name, OperationKind.MUTATION, request, RESPONSE_TEMPLATE))

        for type_name, field_name, kind, request, response in templates:
            request_key = f"{type_name}.{field_name}.req.vtl"
            response_key = f"{type_name}.{field_name}.res.vtl"
            builder.add_resolver_code(request_key, request)
            builder.add_resolver_code(response_key, response)
            pipeline = builder.pipeline(type_name, field_name)
            pipeline.kind = kind
            pipeline.stack_name = stack_name
            pipeline.data_function = PipelineFunction(
                request_key,
                response_key,
                data_source=data_source,
                sync_config=sync_config.to_cfn() if sync_config else None,
            )

    def _input_fields(
        self, model: ModelDefinition, object_types: set, required_keys: bool, optional_rest: bool
    ) -> List[str]:
        fields = []
        for model_field in model.fields:
            if model_field.type_name in object_types:
                continue
            if model_field.name in model.key_fields and required_keys:
                type_ref = model_field.type_ref if model_field.type_ref.endswith("!") else f"{model_field.type_ref}!"
            elif optional_rest or model_field.name in (model.created_at_field, model.updated_at_field, "id"):
                type_ref = _optional(model_field)
            else:
                type_ref = model_field.type_ref
            fields.append(f"{model_field.name}: {type_ref}")
        return fields

    def _extend_schema(
        self,
        builder: ResourceGraphBuilder,
        model: ModelDefinition,
        object_types: set,
        sync_config: Optional[SyncConfig],
        filter_inputs: List[str],
    ) -> None:
        name = model.name
        directives = " ".join(builder.type_directives.get(name, []))
        versioned = sync_config is not None
        version_input = ["_version: Int"] if versioned else []

        if versioned:
            builder.add_fields(
                name, ["_version: Int!", "_deleted: Boolean", "_lastChangedAt: AWSTimestamp!"]
            )

        connection_fields = [f"items: [{name}]!", "nextToken: String"]
        if versioned:
            connection_fields.append("startedAt: AWSTimestamp")
        builder.add_schema_definition(
            f"type Model{name}Connection {directives} {{ {' '.join(connection_fields)} }}"
        )

        filter_fields = []
        for model_field in model.fields:
            input_name = FILTER_INPUT_TYPES.get(model_field.type_name)
            if input_name is None or model_field.is_list:
                continue
            filter_fields.append(f"{model_field.name}: {input_name}")
            if input_name not in filter_inputs:
                filter_inputs.append(input_name)
        filter_name = f"Model{name}FilterInput"
        filter_fields += [f"and: [{filter_name}]", f"or: [{filter_name}]", f"not: {filter_name}"]
        builder.add_schema_definition(f"input {filter_name} {{ {' '.join(filter_fields)} }}")

        key_arguments = ", ".join(
            f"{key}: {model.get_field(key).type_name}!" for key in model.key_fields if model.get_field(key)
        )
        query_fields = {
            "get": f"{model.queries.get('get')}({key_arguments}): {name} {directives}",
            "list": f"{model.queries.get('list')}(filter: {filter_name}, limit: Int, nextToken: String): Model{name}Connection {directives}",
            "sync": f"{model.queries.get('sync')}(filter: {filter_name}, limit: Int, nextToken: String, lastSync: AWSTimestamp): Model{name}Connection {directives}",
        }
        queries = [
            query_fields[operation] for operation in model.queries if operation != "sync" or versioned
        ]
        if queries:
            builder.add_fields("Query", queries)

        mutation_inputs = {
            "create": (f"Create{name}Input", self._input_fields(model, object_types, False, False) + version_input),
            "update": (f"Update{name}Input", self._input_fields(model, object_types, True, True) + version_input),
            "delete": (
                f"Delete{name}Input",
                [f for f in self._input_fields(model, object_types, True, False) if f.split(":")[0] in model.key_fields]
                + version_input,
            ),
        }
        mutation_fields = []
        for operation, field_name in model.mutations.items():
            input_name, input_fields = mutation_inputs[operation]
            builder.add_schema_definition(f"input {input_name} {{ {' '.join(input_fields)} }}")
            mutation_fields.append(f"{field_name}(input: {input_name}!): {name} {directives}")
        if mutation_fields:
            builder.add_fields("Mutation", mutation_fields)

        if model.subscriptions and model.mutations:
            subscriptions = []
            for operation, field_name in model.mutations.items():
                event = {"create": "onCreate", "update": "onUpdate", "delete": "onDelete"}[operation]
                subscriptions.append(
                    f'{event}{name}: {name} @aws_subscribe(mutations: ["{field_name}"]) {directives}'
                )
            builder.add_fields("Subscription", subscriptions)

    def _create_outputs(
        self, builder: ResourceGraphBuilder, model: ModelDefinition, table_id: str, data_source: str
    ) -> None:
        table_stack = builder.resource_stack(table_id)
        builder.add_output(
            table_stack,
            f"GetAtt{model.name}TableName",
            {"Description": "Your DynamoDB table name.", "Value": {"Ref": table_id}},
        )
        builder.add_output(
            table_stack,
            f"GetAtt{model.name}TableStreamArn",
            {"Description": "Your DynamoDB table StreamArn.", "Value": {"Fn::GetAtt": [table_id, "StreamArn"]}},
        )
        builder.add_output(
            builder.resource_stack(data_source),
            f"GetAtt{model.name}DataSourceName",
            {"Description": "Your model DataSource name.", "Value": {"Fn::GetAtt": [data_source, "Name"]}},
        )


def _optional(model_field: ModelField) -> str:
    type_ref = model_field.type_ref
    return type_ref[:-1] if type_ref.endswith("!") else type_ref
