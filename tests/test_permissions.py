"""
Testes do mapa de capacidades por perfil.
"""

import pytest

from convenio.db import db_session
from convenio.errors import AuthorizationError
from convenio.models import Role
from convenio.permissions import (
    ROLE_CAPABILITIES,
    Capability,
    can,
    ensure_client_scope,
    ensure_patient_access,
    require,
)
from tests.conftest import make_session


class TestCapabilities:
    def test_every_role_mapped(self):
        assert set(ROLE_CAPABILITIES) == set(Role)

    def test_admin_has_everything(self):
        assert ROLE_CAPABILITIES[Role.ADMIN] == frozenset(Capability)

    @pytest.mark.parametrize(
        "role,capability,allowed",
        [
            (Role.CLIENT, Capability.VIEW_OWN_CONSULTATIONS, True),
            (Role.CLIENT, Capability.MANAGE_AGENDA, False),
            (Role.CLIENT, Capability.VIEW_AUDIT_LOGS, False),
            (Role.PROFESSIONAL, Capability.MANAGE_AGENDA, True),
            (Role.PROFESSIONAL, Capability.GENERATE_DOCUMENTS, True),
            (Role.PROFESSIONAL, Capability.MANAGE_USERS, False),
            (Role.PROFESSIONAL, Capability.VIEW_OWN_CONSULTATIONS, False),
            (Role.PROFESSIONAL, Capability.MANAGE_MEDICAL_RECORDS, True),
            (Role.PROFESSIONAL, Capability.VIEW_OWN_REVENUE, True),
            (Role.PROFESSIONAL, Capability.VIEW_REVENUE_REPORTS, False),
            (Role.CLIENT, Capability.MANAGE_MEDICAL_RECORDS, False),
            (Role.CLIENT, Capability.VIEW_OWN_REVENUE, False),
        ],
    )
    def test_can(self, role, capability, allowed):
        assert can(make_session(1, role), capability) is allowed

    def test_require_raises(self):
        with pytest.raises(AuthorizationError) as exc:
            require(make_session(1, Role.CLIENT), Capability.MANAGE_AGENDA)
        assert exc.value.detail == {"role": "client", "capability": "manage_agenda"}

    def test_capability_follows_current_role_only(self):
        """Um usuário client+professional com perfil ativo client não agenda."""
        session = make_session(1, Role.CLIENT, roles=(Role.CLIENT, Role.PROFESSIONAL))
        assert not can(session, Capability.MANAGE_AGENDA)


class TestScopes:
    def test_client_scope(self):
        ensure_client_scope(make_session(5, Role.CLIENT), 5)
        ensure_client_scope(make_session(1, Role.ADMIN), 5)
        with pytest.raises(AuthorizationError):
            ensure_client_scope(make_session(6, Role.CLIENT), 5)
        with pytest.raises(AuthorizationError):
            ensure_client_scope(make_session(6, Role.PROFESSIONAL), 5)

    def test_client_reaches_own_dependent_only(self, client_id, dependent_id):
        from convenio.auth_service import register_user

        stranger = register_user("Estranho", "88888888888", "segredo1")

        with db_session() as s:
            ensure_patient_access(s, make_session(client_id, Role.CLIENT), dependent_id=dependent_id)
            with pytest.raises(AuthorizationError):
                ensure_patient_access(s, make_session(stranger, Role.CLIENT), dependent_id=dependent_id)
            with pytest.raises(AuthorizationError):
                ensure_patient_access(s, make_session(stranger, Role.CLIENT), user_id=client_id)

    def test_private_patient_is_per_professional(self, professional_id, other_professional_id, private_patient_id):
        with db_session() as s:
            ensure_patient_access(s, make_session(professional_id, Role.PROFESSIONAL), private_patient_id=private_patient_id)
            with pytest.raises(AuthorizationError):
                ensure_patient_access(
                    s, make_session(other_professional_id, Role.PROFESSIONAL), private_patient_id=private_patient_id
                )
