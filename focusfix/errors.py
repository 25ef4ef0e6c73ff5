from __future__ import annotations


class FocusFixError(Exception):
    """Base class for tracker errors."""


class ConfigurationError(FocusFixError):
    """Settings or taxonomy are unusable; tracking must not start."""


class CaptureUnavailable(FocusFixError):
    """The screen could not be captured for this tick."""



class ServiceError(FocusFixError):
    reason = "service error"

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message or self.reason)
        self.status_code = status_code


class ServiceAuthError(ServiceError):
    reason = "authentication failed"


class ServiceRateLimited(ServiceError):
    reason = "rate limited"


class ServiceQuotaExceeded(ServiceError):
    reason = "quota exceeded"


class ServiceGenericError(ServiceError):
    reason = "service error"
