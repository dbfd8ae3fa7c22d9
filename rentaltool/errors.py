class ServiceError(Exception):
    """Base error raised by the service layer. Carries a user facing message."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = 404


class InvalidTransitionError(ServiceError):
    status_code = 409


class UnavailableError(ServiceError):
    status_code = 409


class ValidationFailed(ServiceError):
    status_code = 422


class ConflictError(ServiceError):
    status_code = 409
