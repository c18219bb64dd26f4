'''
    @auth: AppSync auth directives for multi-provider APIs, `auth` slot
    templates for rules checked at request time and IAM policies for the
    identity pool roles.
'''
from typing import Any, Dict, List, Tuple

import structlog

from ..authorization_modes import (
    AUTH_ROLE_NAME_PARAMETER,
    RULE_PROVIDER_AUTH_TYPES,
    UNAUTH_ROLE_NAME_PARAMETER,
    AuthorizationType,
)
from ..exceptions import InvalidAuthConfigError
from ..resource_graph import ResourceGraphBuilder, api_id
from ..schema_normalizer import AuthRule, ModelDefinition
from .base import TransformContext, TransformerPhase, TransformerPlugin

logger = structlog.get_logger(__name__)

AUTH_SLOT = "auth"

PROVIDER_DIRECTIVES = {
    "apiKey": "@aws_api_key",
    "iam": "@aws_iam",
    "userPools": "@aws_cognito_user_pools",
    "oidc": "@aws_oidc",
    "function": "@aws_lambda",
}

# values returned by $util.authType()
PROVIDER_AUTH_TYPE_NAMES = {
    "apiKey": "API Key Authorization",
    "iam": "IAM Authorization",
    "userPools": "User Pool Authorization",
    "oidc": "Open ID Connect Authorization",
    "function": "Lambda Authorization",
}

SANDBOX_RULE = AuthRule(
    allow="public",
    provider="apiKey",
    operations=("create", "update", "delete", "get", "list", "sync", "listen", "search"),
)


def _string_list(values) -> str:
    return "[" + ", ".join(f'"{value}"' for value in values) + "]"


def _identity_template(rule: AuthRule, variable: str, use_sub_username: bool) -> str:
    if rule.identity_claim and rule.identity_claim != "sub::username":
        return (
            f'#set( ${variable} = $util.defaultIfNull($ctx.identity.claims.get("{rule.identity_claim}"), "") )'
        )
    if rule.identity_claim == "sub::username" or (use_sub_username and rule.provider == "userPools"):
        return "\n".join(
            [
                f'#set( ${variable} = "" )',
                '#set( $claimSub = $ctx.identity.claims.get("sub") )',
                '#set( $claimUsername = $util.defaultIfNull($ctx.identity.claims.get("username"), $ctx.identity.claims.get("cognito:username")) )',
                "#if( !$util.isNull($claimSub) && !$util.isNull($claimUsername) )",
                f'  #set( ${variable} = "${{claimSub}}::${{claimUsername}}" )',
                "#end",
            ]
        )
    return (
        f'#set( ${variable} = $util.defaultIfNull($ctx.identity.claims.get("username"), '
        f'$util.defaultIfNull($ctx.identity.claims.get("cognito:username"), "")) )'
    )


def _rule_template(
    rule: AuthRule, position: int, operation: str, populate_owner_field: bool, use_sub_username: bool
) -> str:
    auth_type = PROVIDER_AUTH_TYPE_NAMES[rule.provider]
    lines = [f'#if( $util.authType() == "{auth_type}" )']

    if rule.allow == "public" and rule.provider == "iam":
        lines.append('  #if( $ctx.identity.cognitoIdentityAuthType == "unauthenticated" )')
        lines.append("    #set( $isAuthorized = true )")
        lines.append("  #end")
    elif rule.allow == "private" and rule.provider == "iam":
        lines.append('  #if( $ctx.identity.cognitoIdentityAuthType == "authenticated" )')
        lines.append("    #set( $isAuthorized = true )")
        lines.append("  #end")
    elif rule.allow in ("public", "private", "custom"):
        lines.append("  #set( $isAuthorized = true )")
    elif rule.allow == "groups" and rule.groups:
        lines.append(
            f'  #set( $userGroups = $util.defaultIfNull($ctx.identity.claims.get("{rule.group_claim}"), []) )'
        )
        lines.append(f"  #foreach( $group in {_string_list(rule.groups)} )")
        lines.append("    #if( $userGroups.contains($group) )")
        lines.append("      #set( $isAuthorized = true )")
        lines.append("    #end")
        lines.append("  #end")
    elif rule.allow == "groups":
        lines.append(
            f'  #set( $userGroups = $util.defaultIfNull($ctx.identity.claims.get("{rule.group_claim}"), []) )'
        )
        if operation == "create":
            lines.append(f"  #if( $userGroups.contains($ctx.args.input.{rule.groups_field}) )")
            lines.append("    #set( $isAuthorized = true )")
            lines.append("  #end")
        else:
            lines.append("  #foreach( $group in $userGroups )")
            lines.append(f'    $util.qr($authFilter.add({{ "{rule.groups_field}": {{ "eq": $group }} }}))')
            lines.append("  #end")
    elif rule.allow == "owner":
        variable = f"ownerIdentity{position}"
        owner_field = rule.owner_field
        lines.extend("  " + line for line in _identity_template(rule, variable, use_sub_username).split("\n"))
        lines.append(f"  #if( !$util.isNullOrEmpty(${variable}) )")
        if operation == "create":
            guard = "" if populate_owner_field else " && !$isAuthorized"
            lines.append(f"    #if( $util.isNull($ctx.args.input.{owner_field}){guard} )")
            lines.append(f'      $util.qr($ctx.args.input.put("{owner_field}", ${variable}))')
            lines.append("    #end")
            lines.append(f"    #if( $ctx.args.input.{owner_field} == ${variable} )")
            lines.append("      #set( $isAuthorized = true )")
            lines.append("    #end")
        else:
            lines.append(f'    $util.qr($authFilter.add({{ "{owner_field}": {{ "eq": ${variable} }} }}))')
        lines.append("  #end")

    lines.append("#end")
    return "\n".join(lines)


def auth_request_template(
    rules: List[AuthRule],
    operation: str,
    admin_roles: Tuple[str, ...],
    populate_owner_field: bool,
    use_sub_username: bool,
) -> str:
    lines = ["#set( $isAuthorized = false )", "#set( $authFilter = [] )"]
    if admin_roles:
        lines.extend(
            [
                '#if( $util.authType() == "IAM Authorization" )',
                f"  #foreach( $adminRole in {_string_list(admin_roles)} )",
                '    #if( $ctx.identity.userArn.contains("assumed-role/$adminRole/") )',
                "      #set( $isAuthorized = true )",
                "    #end",
                "  #end",
                "#end",
            ]
        )
    for position, rule in enumerate(rules):
        lines.append(_rule_template(rule, position, operation, populate_owner_field, use_sub_username))
    lines.extend(
        [
            "#if( !$isAuthorized )",
            "  #if( $authFilter.isEmpty() )",
            "    $util.unauthorized()",
            "  #end",
            '  $util.qr($ctx.stash.put("authFilter", $authFilter))',
            "#end",
            "{}",
        ]
    )
    return "\n".join(lines)


class AuthTransformer(TransformerPlugin):
    name = "auth"
    phase = TransformerPhase.AUTH

    def apply_to(self, builder: ResourceGraphBuilder, context: TransformContext) -> None:
        auth_config = context.auth_config
        parameters = context.transform_parameters
        multi_provider = len(auth_config.providers) > 1
        iam_grants: Dict[str, List[Any]] = {AUTH_ROLE_NAME_PARAMETER: [], UNAUTH_ROLE_NAME_PARAMETER: []}

        for model in context.schema.models:
            rules = list(model.auth_rules)
            if not rules and parameters.sandbox_mode_enabled and auth_config.has_provider(
                AuthorizationType.API_KEY
            ):
                rules = [SANDBOX_RULE]
            if not rules:
                continue

            for rule in rules:
                auth_type = RULE_PROVIDER_AUTH_TYPES[rule.provider]
                if not auth_config.has_provider(auth_type):
                    raise InvalidAuthConfigError(
                        f"@auth on {model.name} uses provider '{rule.provider}', "
                        f"but {auth_type.value} is not a configured authorization mode"
                    )
                if rule.allow == "groups" and not rule.groups and not rule.groups_field:
                    raise InvalidAuthConfigError(
                        f"@auth on {model.name}: groups rules need either groups or groupsField"
                    )

            if multi_provider:
                builder.add_type_directives(model.name, self._directives(rules, context))

            for type_name, operation, field_name in self._operations(model, context):
                allowed = [rule for rule in rules if rule.allows(operation)]
                if all(rule.allow == "public" for rule in rules) and len(allowed) == len(rules):
                    continue
                builder.add_slot(
                    type_name,
                    field_name,
                    AUTH_SLOT,
                    auth_request_template(
                        allowed,
                        operation,
                        context.admin_roles,
                        parameters.populate_owner_field_for_static_group_auth,
                        parameters.use_sub_username_for_default_identity_claim,
                    ),
                )
                for rule in allowed:
                    if rule.provider == "iam":
                        role = UNAUTH_ROLE_NAME_PARAMETER if rule.allow == "public" else AUTH_ROLE_NAME_PARAMETER
                        self._grant(iam_grants[role], type_name, field_name)

            for rule in rules:
                if rule.provider == "iam":
                    role = UNAUTH_ROLE_NAME_PARAMETER if rule.allow == "public" else AUTH_ROLE_NAME_PARAMETER
                    self._grant(iam_grants[role], model.name, "*")
            logger.debug("auth_rules_applied", model=model.name, rules=len(rules))

        for role_parameter, resources in iam_grants.items():
            if resources:
                self._create_role_policy(builder, role_parameter, resources)

    def _directives(self, rules: List[AuthRule], context: TransformContext) -> List[str]:
        directives = []
        for rule in rules:
            directive = PROVIDER_DIRECTIVES[rule.provider]
            if directive not in directives:
                directives.append(directive)
        if context.admin_roles and "@aws_iam" not in directives:
            directives.append("@aws_iam")
        return directives

    def _operations(self, model: ModelDefinition, context: TransformContext) -> List[Tuple[str, str, str]]:
        versioned = (
            context.resolver_config is not None
            and context.resolver_config.for_model(model.name) is not None
        )
        operations = []
        for operation, field_name in model.queries.items():
            if operation != "sync" or versioned:
                operations.append(("Query", operation, field_name))
        for operation, field_name in model.mutations.items():
            operations.append(("Mutation", operation, field_name))
        return operations

    def _grant(self, resources: List[Any], type_name: str, field_name: str) -> None:
        resource = {
            "Fn::Sub": [
                "arn:${AWS::Partition}:appsync:${AWS::Region}:${AWS::AccountId}:apis/${apiId}/types/${typeName}/fields/${fieldName}",
                {"apiId": api_id(), "typeName": type_name, "fieldName": field_name},
            ]
        }
        if resource not in resources:
            resources.append(resource)

    def _create_role_policy(
        self, builder: ResourceGraphBuilder, role_parameter: str, resources: List[Any]
    ) -> None:
        logical_id = "AuthRolePolicy01" if role_parameter == AUTH_ROLE_NAME_PARAMETER else "UnauthRolePolicy01"
        builder.add_root_resource(
            logical_id,
            {
                "Type": "AWS::IAM::ManagedPolicy",
                "Properties": {
                    "Description": "",
                    "Path": "/",
                    "Roles": [{"Ref": role_parameter}],
                    "PolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [
                            {
                                "Effect": "Allow",
                                "Action": ["appsync:GraphQL"],
                                "Resource": resources,
                            }
                        ],
                    },
                },
            },
        )
