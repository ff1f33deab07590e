"""
Tests de autenticación: permisos por rol, Principal desde el token y
claves RS256 generadas por el script de instalación.
"""

from uuid import uuid4

import jwt
import pytest

from app.auth.dependencies import Principal
from app.auth.jwt import create_access_token, decode_token
from app.auth.rbac import has_permission
from app.core.exceptions import CredentialsException
from scripts.generate_keys import generate_rsa_keys


@pytest.mark.parametrize(
    "roles, resource, action, allowed",
    [
        (["receptionist"], "ledger", "create", True),
        (["doctor"], "ledger", "create", False),
        (["doctor"], "ledger", "read", True),
        (["doctor"], "cash_session", "read", False),
        (["receptionist"], "reconciliation", "dispute", False),
        (["doctor", "admin"], "reconciliation", "dispute", True),
        (["admin"], "ledger", "delete", False),
        ([], "appointment", "read", False),
    ],
)
def test_permissions_by_role(roles, resource, action, allowed):
    assert has_permission(roles, resource, action) is allowed


def test_token_round_trip_builds_principal():
    user_id, org_id = uuid4(), uuid4()
    token = create_access_token(user_id, org_id, ["receptionist"])
    principal = Principal.from_token(decode_token(token))
    assert principal.user_id == user_id
    assert principal.organization_id == org_id
    assert principal.roles == ["receptionist"]


def test_token_without_organization_is_rejected():
    with pytest.raises(CredentialsException):
        Principal.from_token({"sub": str(uuid4()), "roles": ["admin"]})


def test_generated_keys_sign_and_verify(tmp_path):
    private_path, public_path = generate_rsa_keys(tmp_path)
    token = jwt.encode({"sub": "u1"}, private_path.read_text(), algorithm="RS256")
    payload = jwt.decode(token, public_path.read_text(), algorithms=["RS256"])
    assert payload["sub"] == "u1"


def test_generate_keys_does_not_overwrite(tmp_path):
    generate_rsa_keys(tmp_path)
    with pytest.raises(FileExistsError):
        generate_rsa_keys(tmp_path)
    generate_rsa_keys(tmp_path, overwrite=True)
