"""
Messaging Stack
===============
The payment-confirmation queue (inbound) and the notification topic
(outbound).

The payment collaborator delivers confirmations at least once. The ledger
consumer reports partial batch failures, so only messages that hit a
retryable error come back; after maxReceiveCount attempts they land in the
DLQ for manual replay.

SQS visibility timeout > Lambda timeout:
  If Lambda takes up to 30s and crashes, the message must stay invisible
  longer than 30s so it isn't delivered to another consumer while the first
  is still processing.
"""
import aws_cdk as cdk
from aws_cdk import aws_sns as sns
from aws_cdk import aws_sqs as sqs
from constructs import Construct


class MessagingStack(cdk.Stack):
    def __init__(self, scope: Construct, id: str, **kwargs):
        super().__init__(scope, id, **kwargs)

        self.queues: dict[str, sqs.Queue] = {}

        # ----------------------------------------------------------------
        # Lifecycle notices: activated, contribution_received, completed...
        # Delivery channels subscribe to this topic.
        # ----------------------------------------------------------------
        self.notification_topic = sns.Topic(
            self, "NotificationTopic",
            topic_name="giftpool-notifications",
        )
        cdk.CfnOutput(self, "NotificationTopicArn", value=self.notification_topic.topic_arn)

        # ----------------------------------------------------------------
        # Payment confirmations + DLQ
        # ----------------------------------------------------------------
        lambda_timeout_seconds = 30
        dlq = sqs.Queue(
            self, "PaymentConfirmationsDlq",
            queue_name="giftpool-payment-confirmations-dlq",
            retention_period=cdk.Duration.days(14),
        )
        self.queues["payment-confirmations"] = sqs.Queue(
            self, "PaymentConfirmationsQueue",
            queue_name="giftpool-payment-confirmations",
            visibility_timeout=cdk.Duration.seconds(lambda_timeout_seconds * 6),
            dead_letter_queue=sqs.DeadLetterQueue(
                max_receive_count=5,
                queue=dlq,
            ),
        )
        self.queues["payment-confirmations-dlq"] = dlq

        cdk.CfnOutput(
            self, "PaymentConfirmationsQueueUrl",
            value=self.queues["payment-confirmations"].queue_url,
        )
