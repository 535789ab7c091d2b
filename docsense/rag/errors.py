from __future__ import annotations

"""Error taxonomy shared by the retrieval and analysis layers."""


class DocSenseError(RuntimeError):
    """Base error carrying a machine-readable kind and an HTTP status."""
    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DocSenseError):
    """Raised for malformed or missing inputs. Never retried."""
    kind = "validation_error"
    status_code = 400


class NotFoundError(DocSenseError):
    """Raised when a document is unknown or outside the caller's scope."""
    kind = "not_found"
    status_code = 404


class UpstreamError(DocSenseError):
    """Raised when an embedding or LLM provider fails or times out."""
    kind = "upstream_error"
    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class ConfigurationError(DocSenseError):
    """Raised when stored data does not match the running configuration."""
    kind = "configuration_error"
    status_code = 500
