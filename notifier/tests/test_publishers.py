"""Tests for alert publishers: SNS and Kafka requests, error mapping."""

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from confluent_kafka import KafkaException

from detector.errors import PublishError
from notifier.publishers import KafkaNotifier, LogNotifier, SnsNotifier

_ARN = "arn:aws:sns:ap-east-1:123456789012:waf-alarm"


class TestSns:
    def test_publish_request(self):
        client = MagicMock()
        client.publish.return_value = {"MessageId": "m-1"}
        SnsNotifier(_ARN, client=client).publish("alert for frequent blocking a at t", "{}")
        client.publish.assert_called_once_with(
            TopicArn=_ARN, Subject="alert for frequent blocking a at t", Message="{}")

    def test_subject_is_single_line_and_truncated(self):
        client = MagicMock()
        SnsNotifier(_ARN, client=client).publish("x" * 150 + "\nmore", "{}")
        subject = client.publish.call_args.kwargs["Subject"]
        assert len(subject) == 100
        assert "\n" not in subject

    def test_client_error_becomes_publish_error(self):
        client = MagicMock()
        client.publish.side_effect = ClientError(
            {"Error": {"Code": "AuthorizationError", "Message": "denied"}}, "Publish")
        with pytest.raises(PublishError):
            SnsNotifier(_ARN, client=client).publish("s", "b")

    def test_topic_required(self):
        with pytest.raises(ValueError):
            SnsNotifier("", client=MagicMock())


class TestKafka:
    def test_produces_json(self):
        producer = MagicMock()
        KafkaNotifier("localhost:9092", "waf-alerts", producer=producer).publish("s", "b")
        args, kwargs = producer.produce.call_args
        assert args == ("waf-alerts",)
        value = json.loads(kwargs["value"].decode("utf-8"))
        assert value["subject"] == "s"
        assert value["body"] == "b"
        producer.poll.assert_called_once_with(0)

    def test_buffer_full_becomes_publish_error(self):
        producer = MagicMock()
        producer.produce.side_effect = BufferError("queue full")
        with pytest.raises(PublishError):
            KafkaNotifier("localhost:9092", producer=producer).publish("s", "b")

    def test_kafka_exception_becomes_publish_error(self):
        producer = MagicMock()
        producer.produce.side_effect = KafkaException("broker down")
        with pytest.raises(PublishError):
            KafkaNotifier("localhost:9092", producer=producer).publish("s", "b")

    def test_close_flushes(self):
        producer = MagicMock()
        KafkaNotifier("localhost:9092", producer=producer).close()
        producer.flush.assert_called_once()


class TestLog:
    def test_keeps_published(self):
        n = LogNotifier()
        n.publish("s", "b")
        assert n.published == [("s", "b")]
