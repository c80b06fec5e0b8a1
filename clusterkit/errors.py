"""Exception hierarchy shared by the cluster components."""


class DistributedError(Exception):
    """Base class for every error raised by the package."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NetworkError(DistributedError):
    """A remote call, connection or replication round failed."""


class StorageError(DistributedError):
    """Reading or writing persistent state failed."""


class ConfigurationError(DistributedError):
    """A component was configured or used incorrectly."""