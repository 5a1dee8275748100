#!/usr/bin/env python3
"""
GiftPool CDK App
================
Infrastructure as Code using AWS CDK (Python).

Stack dependency order:
  DatabaseStack → MessagingStack → ApiStack

Completion policy can be overridden per deployment:
  cdk deploy --all -c partial_checkout_min_percent=50 -c allow_partial_checkout=true

Run: cdk deploy --all
"""
import aws_cdk as cdk

from giftpool.database_stack import DatabaseStack
from giftpool.messaging_stack import MessagingStack
from giftpool.api_stack import ApiStack

app = cdk.App()

env = cdk.Environment(
    account=app.node.try_get_context("account"),
    region=app.node.try_get_context("region") or "us-east-1",
)

db_stack = DatabaseStack(app, "GiftPoolDatabase", env=env)
messaging_stack = MessagingStack(app, "GiftPoolMessaging", env=env)
ApiStack(
    app, "GiftPoolApi",
    tables=db_stack.tables,
    queues=messaging_stack.queues,
    notification_topic=messaging_stack.notification_topic,
    env=env,
)

app.synth()
