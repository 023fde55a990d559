class AppError(Exception):
    """Application error carrying the HTTP status code it maps to."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(AppError):
    status_code = 400


class StorageFailure(AppError):
    status_code = 500
