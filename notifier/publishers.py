"""Alert publishers.

The core renders subject and body; a publisher only delivers them.  Any
delivery failure surfaces as PublishError so the dispatcher can roll back
the alarm claim.
"""

import json
import logging
import time

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from confluent_kafka import KafkaException, Producer

from detector.errors import PublishError

logger = logging.getLogger(__name__)

# SNS rejects subjects longer than this.
_SNS_SUBJECT_LIMIT = 100


class Notifier:
    """Base publisher. Subclass and implement publish()."""

    def publish(self, subject: str, body: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Flush anything buffered.  Default: nothing to do."""


class SnsNotifier(Notifier):

    def __init__(self, topic_arn: str, client=None, region_name: str | None = None):
        if not topic_arn:
            raise ValueError("SNS topic ARN is required (set TOPIC)")
        self.topic_arn = topic_arn
        self._client = client or boto3.client(
            "sns", region_name=region_name,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )

    def publish(self, subject, body):
        # SNS subjects must be single-line ASCII-ish text under 100 chars.
        subject = " ".join(subject.split())[:_SNS_SUBJECT_LIMIT]
        try:
            resp = self._client.publish(
                TopicArn=self.topic_arn,
                Subject=subject,
                Message=body,
            )
        except (ClientError, BotoCoreError) as e:
            raise PublishError(f"SNS publish to {self.topic_arn} failed: {e}") from e
        logger.info("published to SNS message_id=%s subject=%r",
                    resp.get("MessageId"), subject)


class KafkaNotifier(Notifier):
    """Produce alerts to a Kafka topic, one JSON object per alert."""

    def __init__(self, bootstrap_servers: str, topic: str = "waf-alerts", producer=None):
        self.topic = topic
        if producer is None:
            producer = Producer({"bootstrap.servers": bootstrap_servers})
        self._producer = producer

    def publish(self, subject, body):
        value = json.dumps({
            "subject": subject,
            "body": body,
            "published_at": time.time(),
        }).encode("utf-8")
        try:
            self._producer.produce(self.topic, value=value)
            # Serve delivery callbacks without blocking the batch.
            self._producer.poll(0)
        except (KafkaException, BufferError) as e:
            raise PublishError(f"Kafka produce to {self.topic} failed: {e}") from e

    def close(self):
        self._producer.flush()


class LogNotifier(Notifier):
    """Log alerts instead of sending them.  Keeps what it published."""

    def __init__(self):
        self.published: list[tuple[str, str]] = []

    def publish(self, subject, body):
        self.published.append((subject, body))
        logger.warning("ALERT %s\n%s", subject, body)
