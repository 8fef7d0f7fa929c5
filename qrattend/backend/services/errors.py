# --- Service layer exception classes ---

class ServiceError(Exception):
    """General exception class for the service layer."""
    pass

class ConflictError(ServiceError):
    """The request collides with existing data (duplicates, overlaps, repeats)."""
    pass

class NotFoundError(ServiceError):
    """The referenced subject, session or user does not exist for the caller."""
    pass

class AuthorizationError(ServiceError):
    """The caller is identified but not allowed to do this."""
    pass

class AuthenticationError(ServiceError):
    """Credentials or a reset token could not be verified."""
    pass

class StorageError(ServiceError):
    """An unexpected database or cache failure."""
    pass

class OutOfRangeError(ServiceError):
    """The scan location is outside the classroom geofence."""
    def __init__(self, message: str, distance: float):
        super().__init__(message)
        self.distance = distance
