from fastapi import status


class ServiceError(Exception):
    """Base class for failures the services report to the transport layer."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "Bad Request"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(ServiceError):
    """A required field is missing or empty. Nothing was written."""


class MalformedId(ServiceError):
    message = "Malformed id"


class ReferenceNotFound(ServiceError):
    """assignedUser or a pendingTasks entry names an entity that does not exist."""


class DuplicateEmail(ServiceError):
    message = "Email already exists"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class StoreUnavailable(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Store unavailable"


class SyncIncomplete(StoreUnavailable):
    """
    The primary write landed but a follow-up cross-collection write failed.

    The primary entity is kept on the exception; it is already visible to
    readers and is not rolled back.
    """

    def __init__(self, message: str, entity=None):
        super().__init__(message)
        self.entity = entity
