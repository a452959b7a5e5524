from typing import Optional


class AppError(ValueError):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400

    def __init__(
        self, message: str, errors: Optional[list[dict[str, str]]] = None
    ) -> None:
        super().__init__(message)
        self.errors = errors or []


class AuthError(AppError):
    status_code = 401


class ConflictError(AppError):
    status_code = 400


class NotFoundError(AppError):
    """Missing and not-owned resources look the same to the caller."""

    status_code = 404
