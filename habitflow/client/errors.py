class HabitFlowClientError(Exception):
    """Base class for client-side failures."""


class NotFoundError(HabitFlowClientError):
    """The habit does not exist or is no longer active. Never retried."""


class InvalidDataError(HabitFlowClientError):
    """The request was rejected as invalid. Never retried."""


class NetworkError(HabitFlowClientError):
    """Transient connectivity or server failure. Retried on the next sync."""


class StorageError(HabitFlowClientError):
    """The offline cache could not be written."""
