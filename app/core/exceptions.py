"""
Excepciones HTTP personalizadas para la API.

Cada excepción lleva un `code` estable que el cliente puede usar para
distinguir el caso (p. ej. ofrecer otro horario ante APPOINTMENT_CONFLICT).
"""

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base de las excepciones de negocio: HTTPException + código estable."""

    default_code = "ERROR"

    def __init__(
        self,
        status_code: int,
        detail: str,
        code: str | None = None,
        headers: dict | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code or self.default_code


class CredentialsException(AppException):
    """Error de credenciales inválidas (401)."""

    default_code = "INVALID_CREDENTIALS"

    def __init__(self, detail: str = "Credenciales inválidas"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(AppException):
    """Error de permisos insuficientes (403)."""

    default_code = "FORBIDDEN"

    def __init__(self, detail: str = "No tiene permisos para realizar esta acción"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class NotFoundException(AppException):
    """Recurso no encontrado (404)."""

    default_code = "NOT_FOUND"

    def __init__(
        self,
        resource: str = "Recurso",
        detail: str | None = None,
        code: str | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} no encontrado",
            code=code,
        )


class ConflictException(AppException):
    """Conflicto de datos (409): cita solapada, caja ya abierta, corte duplicado."""

    default_code = "CONFLICT"

    def __init__(self, detail: str = "El recurso ya existe", code: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            code=code,
        )


class InvalidStateException(AppException):
    """La entidad no está en el estado requerido por la operación (409)."""

    default_code = "INVALID_STATE"

    def __init__(self, detail: str = "Estado inválido para esta operación", code: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            code=code,
        )


class ValidationException(AppException):
    """Error de validación de negocio (422)."""

    default_code = "VALIDATION_ERROR"

    def __init__(self, detail: str = "Error de validación", code: str | None = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=detail,
            code=code,
        )
