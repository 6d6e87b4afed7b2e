class StepCounterError(Exception):
    """Base class for step counter errors."""


class PersistenceError(StepCounterError):
    """A store operation failed; callers retry on the next natural event."""


class SensorUnavailableError(StepCounterError):
    """The device has no step counter sensor."""


class TrackerNotReadyError(StepCounterError):
    """The tracker has not received its first reading yet."""
