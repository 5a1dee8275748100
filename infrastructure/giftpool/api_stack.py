"""
API Stack
=========
API Gateway + the event, ledger and order Lambda functions.

All three functions ship the whole services/ tree (they share the lifecycle
package) and differ only in their handler entry point.

Lambda configuration highlights:
- X-Ray active tracing enabled on all functions
- Ledger confirmations consumed from SQS with partial batch failure reporting
- Completion policy (auto-complete, partial checkout) set through environment
"""
import aws_cdk as cdk
from aws_cdk import aws_apigateway as apigw
from aws_cdk import aws_lambda as _lambda
from aws_cdk import aws_lambda_event_sources as event_sources
from aws_cdk import aws_logs as logs
from constructs import Construct

LAMBDA_RUNTIME = _lambda.Runtime.PYTHON_3_11


class ApiStack(cdk.Stack):
    def __init__(self, scope: Construct, id: str, *, tables, queues, notification_topic, **kwargs):
        super().__init__(scope, id, **kwargs)

        self.lambdas: dict[str, _lambda.Function] = {}
        code = _lambda.Code.from_asset("../services")

        # ----------------------------------------------------------------
        # Common environment variables (read by FundingConfig.from_env)
        # ----------------------------------------------------------------
        common_env = {
            "EVENTS_TABLE": tables["events"].table_name,
            "CONTRIBUTIONS_TABLE": tables["contributions"].table_name,
            "ORDERS_TABLE": tables["orders"].table_name,
            "PRODUCTS_TABLE": tables["products"].table_name,
            "IDEMPOTENCY_TABLE": tables["idempotency"].table_name,
            "NOTIFICATION_TOPIC_ARN": notification_topic.topic_arn,
            "AUTO_COMPLETE_ON_TARGET": self.node.try_get_context("auto_complete_on_target") or "true",
            "ALLOW_PARTIAL_CHECKOUT": self.node.try_get_context("allow_partial_checkout") or "true",
            "PARTIAL_CHECKOUT_MIN_PERCENT": self.node.try_get_context("partial_checkout_min_percent") or "0",
            "CURRENCY": "KES",
            "LOG_LEVEL": "INFO",
        }

        def make_function(name: str, handler: str, memory_size: int = 256) -> _lambda.Function:
            fn = _lambda.Function(
                self, f"{name.title()}Function",
                function_name=f"giftpool-{name}-service",
                runtime=LAMBDA_RUNTIME,
                handler=handler,
                code=code,
                environment=common_env,
                tracing=_lambda.Tracing.ACTIVE,
                log_retention=logs.RetentionDays.ONE_WEEK,
                timeout=cdk.Duration.seconds(30),
                memory_size=memory_size,
            )
            # Every function may run the completion transaction (edit, activate,
            # checkout, confirm), so all of them write events, contributions and orders
            for table_name in ("events", "contributions", "orders", "idempotency"):
                tables[table_name].grant_read_write_data(fn)
            tables["products"].grant_read_data(fn)
            notification_topic.grant_publish(fn)
            self.lambdas[name] = fn
            return fn

        event_fn = make_function("event", "event_service.handler.handler")
        ledger_fn = make_function("ledger", "ledger_service.handler.handler")
        order_fn = make_function("order", "order_service.handler.handler", memory_size=128)

        # ----------------------------------------------------------------
        # Payment confirmation consumer (SQS-triggered)
        # ----------------------------------------------------------------
        confirmation_fn = make_function("confirmation", "ledger_service.handler.confirmation_handler")
        confirmation_fn.add_event_source(
            event_sources.SqsEventSource(
                queues["payment-confirmations"],
                batch_size=10,
                report_batch_item_failures=True,  # Only retry failed messages
            )
        )

        # ----------------------------------------------------------------
        # API Gateway
        # ----------------------------------------------------------------
        log_group = logs.LogGroup(self, "ApiGwLogs", retention=logs.RetentionDays.ONE_WEEK)

        api = apigw.RestApi(
            self, "GiftPoolApi",
            rest_api_name="giftpool-api",
            deploy_options=apigw.StageOptions(
                stage_name="v1",
                access_log_destination=apigw.LogGroupLogDestination(log_group),
                access_log_format=apigw.AccessLogFormat.json_with_standard_fields(
                    calling_user=True,
                    http_method=True,
                    ip=True,
                    protocol=True,
                    request_time=True,
                    resource_path=True,
                    response_length=True,
                    status=True,
                    user=True,
                ),
                tracing_enabled=True,
            ),
        )

        events_integration = apigw.LambdaIntegration(event_fn)
        ledger_integration = apigw.LambdaIntegration(ledger_fn)
        orders_integration = apigw.LambdaIntegration(order_fn)

        # /events
        events_resource = api.root.add_resource("events")
        events_resource.add_method("POST", events_integration)
        events_resource.add_method("GET", events_integration)

        # /events/{event_id}
        event_resource = events_resource.add_resource("{event_id}")
        event_resource.add_method("GET", events_integration)
        event_resource.add_method("PATCH", events_integration)
        event_resource.add_resource("progress").add_method("GET", events_integration)
        event_resource.add_resource("activate").add_method("POST", events_integration)
        event_resource.add_resource("cancel").add_method("POST", events_integration)
        checkout = event_resource.add_resource("checkout")
        checkout.add_method("GET", events_integration)
        checkout.add_method("POST", events_integration)

        # /events/{event_id}/contributions
        contributions = event_resource.add_resource("contributions")
        contributions.add_method("POST", ledger_integration)
        contributions.add_method("GET", ledger_integration)
        contributions.add_resource("summary").add_method("GET", ledger_integration)

        # /events/{event_id}/order, /orders/{order_id}, /sellers/{seller_id}/orders
        event_resource.add_resource("order").add_method("GET", orders_integration)
        api.root.add_resource("orders").add_resource("{order_id}").add_method("GET", orders_integration)
        api.root.add_resource("sellers").add_resource("{seller_id}").add_resource("orders") \
            .add_method("GET", orders_integration)

        # /contributors/{contributor_id}/contributions, /shared/{share_code}
        api.root.add_resource("contributors").add_resource("{contributor_id}") \
            .add_resource("contributions").add_method("GET", ledger_integration)
        api.root.add_resource("shared").add_resource("{share_code}").add_method("GET", events_integration)

        cdk.CfnOutput(self, "ApiUrl", value=api.url)
