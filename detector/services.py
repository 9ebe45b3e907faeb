"""Wiring shared by the detector and reconciler services.

Both services take the same store / notifier / rules flags.  Defaults come
from the environment so the services run unchanged under a scheduler or a
container that only sets TABLENAME, IPTABLENAME and TOPIC.
"""

import argparse
import logging
import os
from zoneinfo import ZoneInfo

from detector.evaluator import AlarmEvaluator
from detector.rules.loader import DEFAULT_RULES_PATH, load_rules
from notifier.publishers import KafkaNotifier, LogNotifier, SnsNotifier
from statestore.dynamodb import DynamoStateStore
from statestore.memory import MemoryStateStore


def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)


def add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--store", choices=["dynamodb", "memory"], default="dynamodb")
    parser.add_argument("--table", default=os.environ.get("TABLENAME"),
                        help="Event table (env TABLENAME)")
    parser.add_argument("--ip-table", default=os.environ.get("IPTABLENAME"),
                        help="Client inventory table (env IPTABLENAME)")
    parser.add_argument("--region", default=os.environ.get("AWS_REGION"))
    parser.add_argument("--notifier", choices=["sns", "kafka", "log"], default="sns")
    parser.add_argument("--topic-arn", default=os.environ.get("TOPIC"),
                        help="SNS topic for alerts (env TOPIC)")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--alerts-topic", default="waf-alerts",
                        help="Kafka topic for --notifier kafka")
    parser.add_argument("--rules", default=str(DEFAULT_RULES_PATH),
                        help="YAML file with alarm thresholds")
    parser.add_argument("--display-tz", default=os.environ.get("DISPLAY_TZ", "Asia/Shanghai"),
                        help="Timezone of formatted timestamps (env DISPLAY_TZ)")
    parser.add_argument("--metrics-port", type=int, default=0,
                        help="Prometheus metrics HTTP port (0 disables)")
    parser.add_argument("--debug", action="store_true", default=False)


def build_store(args):
    if args.store == "memory":
        return MemoryStateStore()
    return DynamoStateStore(args.table, args.ip_table, region_name=args.region)


def build_notifier(args):
    if args.notifier == "log":
        return LogNotifier()
    if args.notifier == "kafka":
        return KafkaNotifier(args.bootstrap_servers, args.alerts_topic)
    return SnsNotifier(args.topic_arn, region_name=args.region)


def build_evaluator(args) -> AlarmEvaluator:
    burst, recurrence = load_rules(args.rules)
    return AlarmEvaluator(burst, recurrence)


def display_tz(args):
    return ZoneInfo(args.display_tz)
