"""Alarm dispatch: claim, publish, roll back on failure.

The state store has no transactions, so the claim is a conditional
Unalarmed -> Alarmed update on every record the alert covers.  Whoever
wins all claims publishes; anyone who loses one publishes nothing.  That
bounds a window to at most one alert even with several detectors and a
reconciler racing on the same client.
"""

import logging

from detector import metrics
from detector.errors import PublishError, StoreError

logger = logging.getLogger(__name__)


class AlarmDispatcher:

    def __init__(self, store, notifier):
        self.store = store
        self.notifier = notifier

    def dispatch(self, notification) -> bool:
        """Deliver *notification* at most once.

        Returns True if published, False if another evaluator already owns
        the records.  Raises PublishError (after undoing the claim) if the
        alert cannot be rendered or delivered, and StoreError if the store
        fails.
        """
        path = notification.path
        try:
            body = notification.body()
        except PublishError:
            metrics.publish_errors_total.labels(path=path).inc()
            raise

        claimed = self._claim(notification)
        if claimed is None:
            metrics.claims_lost_total.labels(path=path).inc()
            logger.info("skip %s alert for %s: already alarmed",
                        path, notification.client_ip)
            return False

        try:
            self.notifier.publish(notification.subject, body)
        except PublishError:
            metrics.publish_errors_total.labels(path=path).inc()
            self._release(notification.client_ip, claimed)
            raise

        metrics.alerts_total.labels(path=path).inc()
        logger.info("%s alert sent: %s", path, notification.subject)
        return True

    def _claim(self, notification) -> list[int] | None:
        taken = []
        for ts in notification.keys:
            if not self.store.mark_alarmed(notification.client_ip, ts):
                self._release(notification.client_ip, taken)
                return None
            taken.append(ts)
        return taken

    def _release(self, client_ip: str, keys: list[int]) -> None:
        # A failed reset is logged and the remaining keys are still released.
        for ts in keys:
            try:
                self.store.reset_alarm(client_ip, ts)
            except StoreError as e:
                logger.error("could not release claim %s@%s, left Alarmed: %s",
                             client_ip, ts, e)
