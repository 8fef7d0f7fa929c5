# qrattend/backend/api/utilities/http_errors.py

from fastapi import HTTPException, status

from ...services.errors import (
    ServiceError, NotFoundError, AuthorizationError, AuthenticationError,
    StorageError, OutOfRangeError
)


def to_http_exception(error: ServiceError) -> HTTPException:
    """Maps a service-layer error to the HTTP status the API promises."""
    if isinstance(error, OutOfRangeError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": str(error),
                "distance": round(error.distance, 2),
                "details": f"You are {error.distance:.2f} meters away from the classroom"
            }
        )
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, AuthenticationError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(error))
    if isinstance(error, StorageError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
