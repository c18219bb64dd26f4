'''
    Dependency: appsync_transformer
'''
from pathlib import Path

from constructs import Construct
from aws_cdk import Stack, CfnOutput, aws_cognito

from appsync_transformer import ApiKeyAuthorizationMode, UserPoolAuthorizationMode
from appsync_transformer.graphql_api_construct import AmplifyGraphqlApi

class AppSyncStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, project: dict, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        # init
        self.project = project

        # cognito user pool for owner auth
        self.user_pool = aws_cognito.UserPool(self, "user-pool",
            user_pool_name       = f"{self.project['prefix']}-user-pool",
            self_sign_up_enabled = True,
            sign_in_aliases      = aws_cognito.SignInAliases(email=True))

        # appsync api
        self.api = AmplifyGraphqlApi(self, "appsync-blog-api",
            definition           = Path("appsync/schema.graphql"),
            api_name             = f"{self.project['prefix']}-api",
            environment_name     = self.project.get('deployment'),
            authorization_modes  = [
                UserPoolAuthorizationMode(user_pool_id=self.user_pool.user_pool_id, default=True),
                ApiKeyAuthorizationMode(expires_days=30),
            ],
            stack_mappings       = {
                "CommentTable": "Post",
            },
            transform_parameters = {
                "point_in_time_recovery_enabled": True,
            })

        # output
        CfnOutput(self, "graphql_url", value=self.api.graphql_url)
        CfnOutput(self, "api_id", value=self.api.api_id)
        if self.api.api_key:
            CfnOutput(self, "api_key", value=self.api.api_key)
