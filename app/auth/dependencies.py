"""
Dependencies de FastAPI para autenticación.

El núcleo solo consume un Principal ya autenticado:
(organization_id, user_id, roles). No se consulta la DB.
"""

from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth.jwt import TokenType, decode_token
from app.auth.rbac import has_permission
from app.core.exceptions import CredentialsException, ForbiddenException

# ── Security scheme ──────────────────────────────────
security = HTTPBearer(auto_error=False)


# ── Identidad autenticada ────────────────────────────
class Principal:
    """Usuario autenticado dentro de una organización."""

    def __init__(self, organization_id: UUID, user_id: UUID, roles: list[str] | None = None):
        self.organization_id = organization_id
        self.user_id = user_id
        self.roles: list[str] = list(roles or [])

    @classmethod
    def from_token(cls, payload: dict) -> "Principal":
        try:
            return cls(
                organization_id=UUID(payload["organization_id"]),
                user_id=UUID(payload["sub"]),
                roles=payload.get("roles", []),
            )
        except (KeyError, ValueError, TypeError):
            raise CredentialsException("Token sin organización o usuario válidos")

    def __repr__(self) -> str:
        return f"<Principal user={self.user_id} org={self.organization_id} roles={self.roles}>"


# ── Obtener principal actual ─────────────────────────
async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal:
    """Decodifica el JWT del header Authorization y arma el Principal."""
    if credentials is None:
        raise CredentialsException("Falta el token de acceso")
    try:
        payload = decode_token(credentials.credentials)
    except jwt.InvalidTokenError:
        raise CredentialsException("Token inválido o expirado")

    if payload.get("type", TokenType.ACCESS) != TokenType.ACCESS:
        raise CredentialsException("Tipo de token inválido")

    return Principal.from_token(payload)


# ── Factory de dependency con permisos ───────────────
def require_permission(resource: str, action: str):
    """
    Factory que crea un dependency que verifica el permiso RBAC.

    Uso:
        @router.post("/")
        async def create(principal: Principal = Depends(require_permission("ledger", "create"))):
            ...
    """

    async def _check(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if not has_permission(principal.roles, resource, action):
            raise ForbiddenException(
                f"Sin permiso para '{action}' sobre '{resource}'"
            )
        return principal

    return _check
