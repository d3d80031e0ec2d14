"""
Everything the exporter raises derives from ExportError so main() can catch
one type and exit with a readable message. None of these are retried: a
failure anywhere fails the whole run.
"""


class ExportError(Exception):
    pass


class TransportError(ExportError):
    """The request never produced a usable response (DNS, TLS, timeout, reset, non-2xx download)."""


class ApiError(ExportError):
    """Notion answered with a well-formed error object: {"code": ..., "message": ...}."""

    def __init__(self, code, message, status=None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.status = status


class DecodeError(ExportError):
    """A response body did not have the shape we expected (page list or error object)."""

    def __init__(self, message, status=None):
        super().__init__(message if status is None else f"{message} (HTTP {status})")
        self.status = status


class PathError(ExportError):
    """A download destination that cannot be written safely under the output root."""


class WriteError(ExportError):
    """Local filesystem failure while creating directories or writing a file."""
