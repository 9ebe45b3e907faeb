"""Detection consumer: reads WAF log batches, persists them, raises alerts.

Consumes raw WAF log records from Kafka.  Each consume() call returns up
to --batch-size messages; that set is one batch with its own counter.
Every record is written to the state store, and clients blocked often
enough inside the batch get an alert.

Usage:
    python -m detector.main
    python -m detector.main --bootstrap-servers kafka-1:29092 --input-topic waf-logs
    python -m detector.main --store memory --notifier log
"""

import argparse
import signal
import sys

from confluent_kafka import Consumer, KafkaError
from prometheus_client import start_http_server

from detector.dispatch import AlarmDispatcher
from detector.engine import StreamingDetector
from detector.services import (
    add_common_args, build_evaluator, build_notifier, build_store,
    display_tz, setup_logging,
)

running = True


def _shutdown(sig, frame):
    global running
    print("\nShutting down detector...")
    running = False


signal.signal(signal.SIGINT, _shutdown)
signal.signal(signal.SIGTERM, _shutdown)


def main():
    parser = argparse.ArgumentParser(description="WAF frequent-block detector")
    parser.add_argument("--input-topic", default="waf-logs")
    parser.add_argument("--group-id", default="waf-alarm-detector")
    parser.add_argument("--batch-size", type=int, default=500)
    add_common_args(parser)
    args = parser.parse_args()

    setup_logging(args.debug)
    if args.metrics_port:
        start_http_server(args.metrics_port)
        print(f"Prometheus metrics server started on :{args.metrics_port}")

    store = build_store(args)
    notifier = build_notifier(args)
    evaluator = build_evaluator(args)
    detector = StreamingDetector(
        store, AlarmDispatcher(store, notifier), evaluator, display_tz(args),
    )

    consumer = Consumer({
        "bootstrap.servers": args.bootstrap_servers,
        "group.id": args.group_id,
        "auto.offset.reset": "earliest",
        "enable.auto.commit": True,
    })
    consumer.subscribe([args.input_topic])

    consumed = 0
    alerts_sent = 0
    failed = 0

    print(f"Detector started  input={args.input_topic}  store={args.store}  "
          f"notifier={args.notifier}  {evaluator.burst!r}")

    try:
        while running:
            msgs = consumer.consume(num_messages=args.batch_size, timeout=1.0)
            if not msgs:
                continue

            batch = []
            for msg in msgs:
                if msg.error():
                    if msg.error().code() == KafkaError._PARTITION_EOF:
                        continue
                    print(f"Consumer error: {msg.error()}", file=sys.stderr)
                    continue
                batch.append(msg.value())
            if not batch:
                continue

            result = detector.process_batch(batch)
            consumed += len(batch)
            alerts_sent += len(result.alerts)
            failed += len(result.failed)

            for alert in result.alerts:
                print(f"ALERT  path={alert.path:<10s} client={alert.client_ip}  "
                      f"first_seen={alert.formatted_timestamp}")

            print(f"  ... batch of {len(batch)}: {result.counts()}  "
                  f"(total {consumed} records, {alerts_sent} alerts, {failed} failed)")
    finally:
        notifier.close()
        consumer.close()
        print(f"Done. {consumed} records consumed, {alerts_sent} alerts sent, "
              f"{failed} records failed.")


if __name__ == "__main__":
    main()
