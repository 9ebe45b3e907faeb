# Alarm rules as small Python classes.
#
# There are exactly two, one per execution path, and they look at different
# data: BurstRule sees the batch-local counter entry of one client, while
# RecurrenceRule sees that client's persisted records for a trailing window.
# The two thresholds are independent and are tuned through thresholds.yml
# (see loader.py), not by editing the classes.


class Rule:
    """Base alarm rule. Subclass and implement trigger()."""

    id: str
    name: str
    threshold: int
    window_seconds: int

    def __init__(self, threshold: int | None = None, window_seconds: int | None = None):
        if threshold is not None:
            self.threshold = threshold
        if window_seconds is not None:
            self.window_seconds = window_seconds
        if self.threshold < 1:
            raise ValueError(f"{self.id}: threshold must be >= 1, got {self.threshold}")
        if self.window_seconds < 0:
            raise ValueError(
                f"{self.id}: window_seconds must be >= 0, got {self.window_seconds}"
            )

    def trigger(self, observed) -> bool:
        """Given what this path observed for one client, should we alert?"""
        raise NotImplementedError

    def __repr__(self):
        return (f"{type(self).__name__}(threshold={self.threshold}, "
                f"window_seconds={self.window_seconds})")


from detector.rules.burst import BurstRule
from detector.rules.recurrence import RecurrenceRule

__all__ = ["Rule", "BurstRule", "RecurrenceRule"]
