#!/usr/bin/env python3
'''
    Initial cdk project information
    1. Import CDK modules
    2. Import Services modules in this project
    3. Project information
    4. cdk Construct
'''
# Import CDK modules
from aws_cdk import App, Environment

# Import Services modules
from appsync.appsync_stack import AppSyncStack
from appsync_transformer.logging_config import configure_logging

# Information of project
project = dict()
project['account'] = "242593025403"
project['region']  = "us-east-1"
project['env']     = "appsync"
project['name']    = "workshop"
project['prefix']  = f"{project['env']}-{project['name']}"

# cdk environment
cdk_environment = Environment(
    account=project['account'],
    region=project['region'])

# cdk construct
configure_logging()
app = App()

# deployment environment tag, e.g. `cdk synth -c env=dev`
project['deployment'] = app.node.try_get_context("env")

appsync_stack = AppSyncStack(
    scope          = app,
    env            = cdk_environment,
    construct_id   = f"{project['prefix']}-appsync",
    project        = project)

# app synth -> cloudformation template
app.synth()
