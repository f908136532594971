from __future__ import annotations

import pytest

from llm_action_gateway.auth.context import (
    PERMISSION_DESCRIPTIONS,
    AuthContext,
    Permission,
)


def test_repr_hides_attributes_and_permissions() -> None:
    ctx = AuthContext.from_codes(
        "u1", ["tag:read", "view:read"], key_id="k1", attributes={"apiKey": "secret"}
    )
    rendered = repr(ctx)
    assert "permissions=2" in rendered
    assert "secret" not in rendered
    assert str(ctx) == rendered


def test_empty_user_id_rejected() -> None:
    with pytest.raises(ValueError):
        AuthContext(user_id="")


def test_permission_codes_are_coerced() -> None:
    ctx = AuthContext(user_id="u1", permissions=frozenset({"tag:read"}))  # type: ignore[arg-type]
    assert ctx.permissions == frozenset({Permission.TAG_READ})


def test_wildcard_code_is_admin() -> None:
    ctx = AuthContext.from_codes("u1", ["*"])
    assert ctx.is_admin
    assert ctx.has_permission(Permission.SCRIPT_DELETE)


def test_unknown_code_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown permission code"):
        AuthContext.from_codes("u1", ["tag:explode"])


def test_read_all_covers_reads_only() -> None:
    ctx = AuthContext.from_codes("u1", ["read_all"])
    assert ctx.has_permission(Permission.NAMED_QUERY_READ)
    assert not ctx.has_permission(Permission.TAG_WRITE_VALUE)
    assert ctx.has_any_permission([Permission.TAG_CREATE, Permission.TAG_READ])
    assert not ctx.has_all_permissions([Permission.TAG_CREATE, Permission.TAG_READ])


def test_attributes_are_defensive_copy() -> None:
    source = {"team": "ops"}
    ctx = AuthContext(user_id="u1", attributes=source)
    source["team"] = "tampered"
    assert ctx.attributes["team"] == "ops"
    with pytest.raises(TypeError):
        ctx.attributes["team"] = "x"  # type: ignore[index]


def test_rate_limit_key_prefers_key_id() -> None:
    assert AuthContext(user_id="u1", key_id="k1").rate_limit_key == "k1"
    assert AuthContext(user_id="u1").rate_limit_key == "u1"


@pytest.mark.parametrize(
    "left, right, expected",
    [
        (AuthContext(user_id="u1"), AuthContext(user_id="u1"), True),
        (AuthContext(user_id="u1"), AuthContext(user_id="u2"), False),
        (AuthContext(user_id="u1", key_id="k1"), AuthContext(user_id="u1", key_id="k1"), True),
        (AuthContext(user_id="u1", key_id="k1"), AuthContext(user_id="u1", key_id="k2"), False),
        (AuthContext(user_id="u1", key_id="k1"), AuthContext(user_id="u1"), False),
    ],
)
def test_same_identity(left, right, expected) -> None:
    assert left.same_identity(right) is expected


def test_display_name_and_audit_string() -> None:
    ctx = AuthContext(user_id="u1", user_name="Alice", client_address="10.0.0.5")
    assert ctx.display_name == "Alice"
    assert ctx.to_audit_string() == "user=u1, source=unknown, from=10.0.0.5"
    assert AuthContext.anonymous().user_id == "anonymous"


def test_every_permission_is_described() -> None:
    assert set(PERMISSION_DESCRIPTIONS) == set(Permission)
