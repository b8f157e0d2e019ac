from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    CONFLICT = "CONFLICT"
    SERVICE_ERROR = "SERVICE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


class AppError(Exception):
    """Application error carrying an HTTP status and a machine-readable code."""

    def __init__(self, status_code: int, message: str, code: ErrorCode) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code

    def __repr__(self) -> str:
        return f"AppError({self.status_code}, {self.message!r}, {self.code.value})"

    @classmethod
    def conflict(cls, message: str) -> AppError:
        return cls(409, message, ErrorCode.CONFLICT)

    @classmethod
    def service_error(cls, message: str) -> AppError:
        return cls(500, message, ErrorCode.SERVICE_ERROR)

    @classmethod
    def not_found(cls, message: str) -> AppError:
        return cls(404, message, ErrorCode.NOT_FOUND)

    @classmethod
    def database_error(cls, message: str) -> AppError:
        return cls(500, message, ErrorCode.DATABASE_ERROR)
