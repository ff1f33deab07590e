"""
Definición de permisos RBAC por rol.
Mapea qué acciones puede realizar cada rol.
"""

import enum


class Role(str, enum.Enum):
    """Roles que emite el proveedor de identidad."""
    ADMIN = "admin"
    DOCTOR = "doctor"
    RECEPTIONIST = "receptionist"
    DEV = "dev"


# ── Permisos por recurso ─────────────────────────────
# Formato: {recurso: {acción: [roles permitidos]}}
PERMISSIONS: dict[str, dict[str, list[Role]]] = {
    "appointment": {
        "create": [Role.ADMIN, Role.DOCTOR, Role.RECEPTIONIST, Role.DEV],
        "read": [Role.ADMIN, Role.DOCTOR, Role.RECEPTIONIST, Role.DEV],
        "update": [Role.ADMIN, Role.DOCTOR, Role.RECEPTIONIST, Role.DEV],
    },
    "ledger": {
        "create": [Role.ADMIN, Role.RECEPTIONIST, Role.DEV],
        "read": [Role.ADMIN, Role.DOCTOR, Role.RECEPTIONIST, Role.DEV],
        # Las entradas son INSERT-only: no hay update ni delete
    },
    "cash_session": {
        "create": [Role.ADMIN, Role.RECEPTIONIST, Role.DEV],
        "read": [Role.ADMIN, Role.RECEPTIONIST, Role.DEV],
        "close": [Role.ADMIN, Role.RECEPTIONIST, Role.DEV],
    },
    "reconciliation": {
        "create": [Role.ADMIN, Role.RECEPTIONIST, Role.DEV],
        "read": [Role.ADMIN, Role.RECEPTIONIST, Role.DEV],
        "dispute": [Role.ADMIN, Role.DEV],
    },
    "audit_log": {
        "read": [Role.ADMIN, Role.DEV],
    },
}


def has_permission(roles: list[str], resource: str, action: str) -> bool:
    """Verifica si alguno de los roles tiene permiso para una acción en un recurso."""
    allowed = {r.value for r in PERMISSIONS.get(resource, {}).get(action, [])}
    return any(role in allowed for role in roles)
