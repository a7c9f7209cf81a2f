from __future__ import annotations


class ReconcileError(Exception):
    """Base class for everything the reconcilers raise on purpose."""


class ConfigurationError(ReconcileError):
    """Inputs are wrong; retrying will not help until someone fixes them."""


class OfferingNotFoundError(ConfigurationError):
    pass


class PlanNotFoundError(ConfigurationError):
    pass


class DuplicateResourceError(ConfigurationError):
    pass


class EmptyConfigError(ConfigurationError):
    pass


class PlatformError(ReconcileError):
    """A platform API call failed.

    `transient` is True for network failures and 5xx responses.
    """

    def __init__(self, message: str, status_code: int | None = None, transient: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class CanceledError(ReconcileError):
    pass


class WaitTimeoutError(ReconcileError):
    pass
