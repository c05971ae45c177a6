class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class ValidationError(AppError):
    """Raised when request or generation parameters are malformed."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class InfeasibilityError(AppError):
    """Raised when the scheduling input cannot be satisfied by any timetable."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class EncodingError(AppError):
    """Raised when the scheduling input and a chromosome disagree on shape."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=500, details=details)

class SchedulerError(AppError):
    """Raised when the scheduler encounters a logical error or invalid state."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class JobStateError(AppError):
    """Raised when a job progress update would move a job backwards."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)
