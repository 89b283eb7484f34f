"""
Error taxonomy shared by the stores and engines.
Every error carries the HTTP status it maps to.
"""


class ToolHubError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ToolHubError):
    """Missing or malformed input, raised before any write."""
    status_code = 400


class NotFoundError(ToolHubError):
    """Entity absent, soft-deleted, or outside the caller's department/own scope."""
    status_code = 404


class PermissionDeniedError(ToolHubError):
    status_code = 403


class PreconditionFailedError(ToolHubError):
    """Business rule violated (chain not assigned, category mismatch, wrong state)."""
    status_code = 400


class ConflictError(ToolHubError):
    status_code = 400
