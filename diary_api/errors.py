"""Error taxonomy shared by the engine, the access policy and the HTTP layer."""


class DiaryError(Exception):
    """Base class for errors reported to callers."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class ValidationError(DiaryError):
    """Invalid input."""

    status_code = 400
    code = "BAD_REQUEST"


class Unauthorized(DiaryError):
    """Unauthorized"""

    status_code = 401
    code = "UNAUTHORIZED"


class Conflict(DiaryError):
    """Transaction serialization failure."""

    status_code = 409
    code = "CONFLICT"


class StorageUnavailable(DiaryError):
    """Storage is unavailable."""

    status_code = 503
    code = "STORAGE_UNAVAILABLE"


class RateLimited(DiaryError):
    """Too Many Requests"""

    status_code = 429
    code = "RATE_LIMITED"


class CaptchaFailed(DiaryError):
    """Turnstile verification failed"""

    status_code = 400
    code = "CAPTCHA_FAILED"


class CaptchaUnavailable(DiaryError):
    """Turnstile verification is unavailable."""

    status_code = 502
    code = "CAPTCHA_UNAVAILABLE"
