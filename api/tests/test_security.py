import pytest

import fulfillment.core.security as security
from fulfillment.core.auth import Principal


def test_role_resolution_ignores_user_metadata() -> None:
    role = security._resolve_role(
        {
            "id": "user-1",
            "app_metadata": {},
            "user_metadata": {"role": "admin"},
        }
    )
    assert role == "user"


def test_role_resolution_supports_app_metadata_roles_array() -> None:
    role = security._resolve_role(
        {
            "id": "user-1",
            "app_metadata": {"roles": ["moderator", "user"]},
        }
    )
    assert role == "user"


def test_unknown_role_falls_back_to_user() -> None:
    assert security._resolve_role({"id": "user-1", "app_metadata": {"role": "admin"}}) == "user"
    assert set(security.ROLE_SCOPES) == {"user"}


def test_principal_scope_check() -> None:
    principal = Principal(subject="user-1", scopes=set(security.ROLE_SCOPES["user"]), role="user")
    principal.require_scopes({"applications:write"})
    with pytest.raises(PermissionError):
        principal.require_scopes({"postings:delete"})
    assert principal.user_id == "user-1"
