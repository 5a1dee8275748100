"""
Database Stack
==============
All DynamoDB tables.

Design principles applied:
1. One table per aggregate (events, contributions, orders)
2. Keys chosen so uniqueness rules are enforced by the key itself:
   contributions by payment_reference, orders by event_id
3. TTL on idempotency table (prevents unbounded growth)
4. Pay-per-request billing (no capacity planning for unpredictable workloads)
5. Point-in-time recovery on tables that hold money
"""
import aws_cdk as cdk
from aws_cdk import aws_dynamodb as dynamodb
from constructs import Construct


class DatabaseStack(cdk.Stack):
    def __init__(self, scope: Construct, id: str, **kwargs):
        super().__init__(scope, id, **kwargs)

        self.tables = {}

        def make_table(name: str, partition_key: str, pitr: bool = True, **extra) -> dynamodb.Table:
            return dynamodb.Table(
                self, f"{name.title()}Table",
                table_name=f"giftpool-{name}",
                partition_key=dynamodb.Attribute(name=partition_key, type=dynamodb.AttributeType.STRING),
                billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
                point_in_time_recovery=pitr,
                removal_policy=cdk.RemovalPolicy.DESTROY,  # use RETAIN in production
                **extra,
            )

        # PK: event_id, version attribute is the optimistic-lock counter
        self.tables["events"] = make_table("events", "event_id")

        # PK: payment_reference (one row per real-world payment)
        self.tables["contributions"] = make_table("contributions", "payment_reference")

        # PK: event_id (at most one order per event)
        self.tables["orders"] = make_table("orders", "event_id")

        # Catalog snapshot source, owned by the catalog team
        self.tables["products"] = make_table("products", "product_id", pitr=False)

        # PK: idempotency_key, TTL: auto-expire after 24h
        self.tables["idempotency"] = make_table(
            "idempotency", "idempotency_key", pitr=False, time_to_live_attribute="ttl"
        )

        # Output table names for cross-stack references
        for name, table in self.tables.items():
            cdk.CfnOutput(self, f"{name.title()}TableName", value=table.table_name)
