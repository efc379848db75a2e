class ShortenerError(Exception):
    """Base class for every error the shortening service reports to callers."""

    status_code = 500
    title = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.title)
        self.message = message or self.title


class ValidationFailed(ShortenerError):
    status_code = 400
    title = "Validation failed"


class InvalidUrl(ValidationFailed):
    pass


class InvalidValidity(ValidationFailed):
    pass


class InvalidShortcode(ValidationFailed):
    pass


class ShortcodeConflict(ShortenerError):
    status_code = 409
    title = "Shortcode already exists"


class NotFound(ShortenerError):
    status_code = 404
    title = "Shortcode not found"


class Expired(ShortenerError):
    status_code = 410
    title = "URL expired"


class StorageError(ShortenerError):
    """Wraps any persistence failure (I/O, driver, timeout)."""

    status_code = 500
    title = "Internal server error"
