'''
    AmplifyGraphqlApi: compiles a GraphQL schema into nested CloudFormation
    templates and includes them into the enclosing stack.
    Dependency: aws_cdk, constructs
'''
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

import structlog
from aws_cdk import RemovalPolicy, Stage, aws_s3, aws_s3_deployment, cloudformation_include
from constructs import Construct

from .authorization_modes import AuthorizationMode
from .conflict_resolution import ConflictResolution
from .construct_exports import generate_construct_exports
from .pipeline import CompiledApi, FunctionSlots, compile_api
from .resolver_manifest import list_generated_slots
from .schema_normalizer import SchemaInput
from .transformers import TransformerPlugin
from .types import AmplifyGraphqlApiResources, FunctionSlot

logger = structlog.get_logger(__name__)

ROOT_INCLUDE_ID = "RootStack"


class AmplifyGraphqlApi(Construct):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        definition: SchemaInput,
        authorization_modes: Sequence[AuthorizationMode],
        api_name: Optional[str] = None,
        environment_name: Optional[str] = None,
        stack_mappings: Optional[Mapping[str, str]] = None,
        function_slots: FunctionSlots = (),
        conflict_resolution: Optional[ConflictResolution] = None,
        transform_parameters: Optional[Mapping[str, Any]] = None,
        custom_transformers: Sequence[TransformerPlugin] = (),
        output_directory: Optional[str] = None,
        asset_bucket: Optional[aws_s3.IBucket] = None,
    ) -> None:
        super().__init__(scope, construct_id)
        # init
        if output_directory is None:
            output_directory = str(Path(Stage.of(self).outdir) / f"graphql-api-{self.node.addr}")
        root_key = f"graphql-api/{self.node.addr}"

        # s3 bucket for resolvers, functions and schema
        if asset_bucket is None:
            asset_bucket = aws_s3.Bucket(self, "AssetBucket",
                encryption          = aws_s3.BucketEncryption.S3_MANAGED,
                block_public_access = aws_s3.BlockPublicAccess.BLOCK_ALL,
                enforce_ssl         = True,
                removal_policy      = RemovalPolicy.DESTROY,
                auto_delete_objects = True)
        self.asset_bucket = asset_bucket

        # schema -> templates and assets
        self._compiled: CompiledApi = compile_api(
            definition,
            authorization_modes,
            output_directory,
            api_name             = api_name or construct_id,
            environment_name     = environment_name,
            bucket_name          = asset_bucket.bucket_name,
            root_key             = root_key,
            stack_mappings       = stack_mappings,
            function_slots       = function_slots,
            conflict_resolution  = conflict_resolution,
            transform_parameters = transform_parameters,
            custom_transformers  = custom_transformers)
        assets = self._compiled.assets

        # asset upload
        deployment = aws_s3_deployment.BucketDeployment(self, "AssetDeployment",
            sources                = [aws_s3_deployment.Source.asset(str(assets.output_directory))],
            destination_bucket     = asset_bucket,
            destination_key_prefix = root_key,
            prune                  = True)

        # include generated templates
        self.include = cloudformation_include.CfnInclude(self, ROOT_INCLUDE_ID,
            template_file        = str(assets.root_template_path),
            parameters           = self._compiled.include_parameters,
            preserve_logical_ids = True,
            load_nested_stacks   = {
                name: cloudformation_include.CfnIncludeProps(
                    template_file        = str(path),
                    preserve_logical_ids = True)
                for name, path in assets.stack_template_paths.items()
            })
        self.include.node.add_dependency(deployment)

        # construct exports
        self.resources: AmplifyGraphqlApiResources = generate_construct_exports(
            self._compiled.graph.root_stack, self._compiled.graph.stacks, self.include)
        self.api_id = self.resources.api.attr_api_id
        self.graphql_url = self.resources.api.attr_graph_ql_url
        self.api_key = self.resources.api_key.attr_api_key if self.resources.api_key else None
        logger.info("graphql_api_included", construct=self.node.path, stacks=sorted(assets.stack_template_paths))

    @property
    def environment_name(self) -> str:
        return self._compiled.environment_name

    def get_generated_function_slots(self) -> List[FunctionSlot]:
        """Resolver pipeline steps generated for this API, as override-ready slots."""
        return list_generated_slots(self._compiled.graph.resolvers)
