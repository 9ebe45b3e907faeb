"""Reconciler service: periodic sweep over persisted WAF records.

Runs one sweep every --interval seconds, or a single sweep with --once
(for cron or any external scheduler).  A failed sweep is logged and the
loop waits for the next tick; with --once the exit status is 1.

Usage:
    python -m reconciler.main --once
    python -m reconciler.main --interval 60 --metrics-port 9091
"""

import argparse
import logging
import signal
import sys
import time

from prometheus_client import start_http_server

from detector.dispatch import AlarmDispatcher
from detector.errors import AlarmError
from detector.services import (
    add_common_args, build_evaluator, build_notifier, build_store, setup_logging,
)
from reconciler.sweep import Reconciler

logger = logging.getLogger("reconciler")

running = True


def _shutdown(sig, frame):
    global running
    print("\nShutting down reconciler...")
    running = False


signal.signal(signal.SIGINT, _shutdown)
signal.signal(signal.SIGTERM, _shutdown)


def _run_once(reconciler) -> bool:
    try:
        result = reconciler.run()
    except AlarmError as e:
        logger.error("sweep aborted: %s", e)
        return False
    for alert in result.published:
        print(f"ALERT  path={alert.path:<10s} client={alert.client_ip}  "
              f"first_seen={alert.formatted_timestamp}")
    print(f"Sweep done  clients={result.clients_scanned}  "
          f"published={len(result.published)}  skipped={len(result.skipped)}")
    return True


def main():
    parser = argparse.ArgumentParser(description="WAF frequent-block reconciler")
    parser.add_argument("--interval", type=float, default=60.0,
                        help="Seconds between sweeps")
    parser.add_argument("--once", action="store_true", default=False,
                        help="Run a single sweep and exit")
    add_common_args(parser)
    args = parser.parse_args()

    setup_logging(args.debug)
    if args.metrics_port:
        start_http_server(args.metrics_port)
        print(f"Prometheus metrics server started on :{args.metrics_port}")

    store = build_store(args)
    notifier = build_notifier(args)
    evaluator = build_evaluator(args)
    reconciler = Reconciler(store, AlarmDispatcher(store, notifier), evaluator)

    print(f"Reconciler started  store={args.store}  notifier={args.notifier}  "
          f"{evaluator.recurrence!r}")

    try:
        if args.once:
            sys.exit(0 if _run_once(reconciler) else 1)

        next_run = time.monotonic()
        while running:
            if time.monotonic() >= next_run:
                _run_once(reconciler)
                next_run = time.monotonic() + args.interval
            time.sleep(0.5)
    finally:
        notifier.close()


if __name__ == "__main__":
    main()
