"""Error taxonomy shared by the streaming detector and the reconciler.

Each error is fatal to the unit of work it occurs in: one record on the
streaming path, the whole sweep on the reconcile path.  Nothing here is
retried internally.
"""


class AlarmError(Exception):
    """Base class for everything the alarm pipeline raises on purpose."""


class DecodeError(AlarmError):
    """A raw log record is malformed or carries an unparsable timestamp."""


class StoreError(AlarmError):
    """A read or write against the state store failed."""


class PublishError(AlarmError):
    """An alert could not be rendered or delivered."""
