"""
Testes de cadastro, login e seleção/troca de perfil.
"""

import pytest
from sqlalchemy import select

from convenio.auth_security import decode_token
from convenio.auth_service import (
    get_profile,
    grant_role,
    login,
    register_user,
    revoke_role,
    select_role,
    session_from_token,
    switch_role,
    verify_selection_token,
)
from convenio.db import db_session
from convenio.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from convenio.models import AuditLog, Role


def audit_actions(user_id: int) -> list[str]:
    with db_session() as s:
        return list(s.scalars(select(AuditLog.action).where(AuditLog.user_id == user_id).order_by(AuditLog.id)))


class TestRegister:
    def test_default_role_is_client(self):
        uid = register_user("Fulano", "123.456.789-01", "segredo1")
        identity = login("12345678901", "segredo1").identity
        assert identity.id == uid
        assert identity.roles == (Role.CLIENT,)
        assert identity.subscription_status == "pending"

    def test_duplicate_cpf(self):
        register_user("Fulano", "12345678901", "segredo1")
        with pytest.raises(ConflictError):
            register_user("Outro", "123.456.789-01", "segredo2")

    @pytest.mark.parametrize(
        "name,cpf,password",
        [("", "12345678901", "segredo1"), ("Fulano", "123", "segredo1"), ("Fulano", "12345678901", "123")],
    )
    def test_invalid_input(self, name, cpf, password):
        with pytest.raises(ValidationError):
            register_user(name, cpf, password)


class TestLogin:
    def test_single_role_gets_token(self):
        uid = register_user("Fulano", "12345678901", "segredo1")

        result = login("12345678901", "segredo1")

        assert not result.needs_role_selection
        assert result.selection_token is None
        claims = decode_token(result.grant.token)
        assert claims["sub"] == str(uid)
        assert claims["currentRole"] == "client"
        assert result.grant.user["currentRole"] == "client"

    def test_multi_role_needs_selection(self):
        uid = register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])

        result = login("12345678901", "segredo1")

        assert result.needs_role_selection
        assert result.grant is None
        verify_selection_token(result.selection_token, uid)

    def test_wrong_password(self):
        register_user("Fulano", "12345678901", "segredo1")
        with pytest.raises(AuthenticationError):
            login("12345678901", "errada")

    def test_unknown_cpf(self):
        with pytest.raises(AuthenticationError):
            login("99999999999", "segredo1")

    def test_selection_token_bound_to_user(self):
        register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])
        other = register_user("Outro", "10987654321", "segredo1")
        token = login("12345678901", "segredo1").selection_token

        with pytest.raises(AuthenticationError):
            verify_selection_token(token, other)

    def test_selection_token_is_not_a_session(self):
        register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])
        token = login("12345678901", "segredo1").selection_token

        with pytest.raises(AuthenticationError):
            session_from_token(token)


class TestSelectAndSwitch:
    def test_select_role(self):
        uid = register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])

        grant = select_role(uid, "professional")

        assert grant.session.current_role is Role.PROFESSIONAL
        assert session_from_token(grant.token).current_role is Role.PROFESSIONAL
        assert "select_role" in audit_actions(uid)

    def test_select_role_not_held(self):
        uid = register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])

        with pytest.raises(AuthorizationError):
            select_role(uid, "admin")

        assert audit_actions(uid)[-1] == "select_role_denied"

    def test_select_role_invalid_name(self):
        uid = register_user("Fulano", "12345678901", "segredo1")
        with pytest.raises(ValidationError):
            select_role(uid, "superuser")

    def test_select_role_unknown_user(self):
        with pytest.raises(NotFoundError):
            select_role(999, "client")

    def test_switch_role(self):
        uid = register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])
        session = select_role(uid, Role.CLIENT).session

        grant = switch_role(session, Role.PROFESSIONAL)

        assert decode_token(grant.token)["currentRole"] == "professional"
        with db_session() as s:
            row = s.scalars(
                select(AuditLog).where(AuditLog.action == "switch_role").order_by(AuditLog.id.desc())
            ).first()
            assert row.old_values == {"role": "client"}
            assert row.new_values == {"role": "professional"}

    def test_switch_to_role_not_held_is_denied_and_audited(self):
        uid = register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])
        session = select_role(uid, Role.CLIENT).session

        with pytest.raises(AuthorizationError):
            switch_role(session, Role.ADMIN)

        assert audit_actions(uid)[-1] == "switch_role_denied"

    def test_revoked_role_invalidates_token(self):
        uid = register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])
        token = select_role(uid, Role.PROFESSIONAL).token

        revoke_role(uid, Role.PROFESSIONAL)

        with pytest.raises(AuthorizationError):
            session_from_token(token)

    def test_garbage_token(self):
        with pytest.raises(AuthenticationError):
            session_from_token("not-a-jwt")

    def test_profile_reports_current_role(self):
        uid = register_user("Fulano", "12345678901", "segredo1", roles=[Role.CLIENT, Role.PROFESSIONAL])
        session = select_role(uid, Role.PROFESSIONAL).session

        profile = get_profile(session)

        assert profile["currentRole"] == "professional"
        assert profile["roles"] == ["client", "professional"]


class TestRoleManagement:
    def test_grant_role_is_idempotent(self):
        uid = register_user("Fulano", "12345678901", "segredo1")
        assert grant_role(uid, "professional") == ["client", "professional"]
        assert grant_role(uid, "professional") == ["client", "professional"]

    def test_cannot_revoke_last_role(self):
        uid = register_user("Fulano", "12345678901", "segredo1")
        with pytest.raises(ValidationError):
            revoke_role(uid, "client")

    def test_login_is_audited(self):
        uid = register_user("Fulano", "12345678901", "segredo1")
        login("12345678901", "segredo1")
        assert audit_actions(uid) == ["register", "login", "select_role"]
