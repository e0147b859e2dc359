from typing import Dict, List, Optional


class ApiError(Exception):
    """Failure that maps onto a JSON error response."""

    status_code = 500
    default_message = "Internal server error."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, object]:
        return {"message": self.message}


class ValidationError(ApiError):
    status_code = 400
    default_message = "The request is missing required fields."

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict]] = None):
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, object]:
        payload = super().to_dict()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class InvalidIdentifier(ApiError):
    status_code = 400
    default_message = "Invalid identifier."


class CapacityExceeded(ApiError):
    status_code = 400
    default_message = "The collection is full."


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found."


class StoreFailure(ApiError):
    status_code = 500
    default_message = "A storage error occurred. Please try again."
