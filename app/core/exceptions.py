"""Error taxonomy shared by every core service.

Each error carries a machine-readable ``kind``, a human-readable ``reason``
and the HTTP status the API layer renders it with. Raw storage exceptions
are never raised to callers; they are wrapped in :class:`StorageError`.
"""
from fastapi import status


class ServiceError(Exception):
    """Base class for all user-visible failures."""

    kind: str = "service_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_reason: str = "Request could not be completed"

    def __init__(self, reason: str = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)

    def to_dict(self) -> dict:
        return {"detail": self.reason, "kind": self.kind}


class ValidationError(ServiceError):
    """Bad input shape, rejected before any store call."""

    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_reason = "Invalid request"


class ContentBlocked(ServiceError):
    """Moderation hit. Always recoverable by editing the text."""

    kind = "content_blocked"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_reason = "Content contains inappropriate language"


class Forbidden(ServiceError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_reason = "You are not allowed to perform this action"


class NotParticipant(Forbidden):
    kind = "not_participant"
    default_reason = "You are not a participant in this conversation"


class AlreadyRequestedBySelf(Forbidden):
    kind = "already_requested_by_self"
    default_reason = "You cannot approve your own deletion request"


class NotFound(ServiceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_reason = "Not found"


class RequestNotFound(NotFound):
    kind = "request_not_found"
    default_reason = "No pending deletion request for this conversation"


class Conflict(ServiceError):
    """Uniqueness violation. Resolved internally by re-reading."""

    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT
    default_reason = "Conflicting concurrent update"


class StorageError(ServiceError):
    kind = "storage_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_reason = "Storage is temporarily unavailable"


class DeadlineExceeded(ServiceError):
    kind = "deadline_exceeded"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_reason = "Operation did not complete before its deadline"
