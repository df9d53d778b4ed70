"""
Capacidades por perfil.

A checagem é feita uma vez, na borda da sessão (dependências da API),
em vez de condicionais espalhadas pelos casos de uso.
"""
from __future__ import annotations

import enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth_service import SessionContext
from .errors import AuthorizationError
from .models import Consultation, Dependent, PrivatePatient, Role


class Capability(str, enum.Enum):
    VIEW_OWN_CONSULTATIONS = "view_own_consultations"
    MANAGE_DEPENDENTS = "manage_dependents"
    MANAGE_AGENDA = "manage_agenda"
    MANAGE_PRIVATE_PATIENTS = "manage_private_patients"
    MANAGE_LOCATIONS = "manage_locations"
    LOOKUP_CLIENTS = "lookup_clients"
    GENERATE_DOCUMENTS = "generate_documents"
    MANAGE_SERVICES = "manage_services"
    MANAGE_USERS = "manage_users"
    VIEW_ALL_CONSULTATIONS = "view_all_consultations"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    MANAGE_MEDICAL_RECORDS = "manage_medical_records"
    VIEW_OWN_REVENUE = "view_own_revenue"
    VIEW_REVENUE_REPORTS = "view_revenue_reports"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.CLIENT: frozenset({
        Capability.VIEW_OWN_CONSULTATIONS,
        Capability.MANAGE_DEPENDENTS,
    }),
    Role.PROFESSIONAL: frozenset({
        Capability.MANAGE_AGENDA,
        Capability.MANAGE_PRIVATE_PATIENTS,
        Capability.MANAGE_LOCATIONS,
        Capability.LOOKUP_CLIENTS,
        Capability.GENERATE_DOCUMENTS,
        Capability.MANAGE_MEDICAL_RECORDS,
        Capability.VIEW_OWN_REVENUE,
    }),
    Role.ADMIN: frozenset(Capability),
}

if set(ROLE_CAPABILITIES) != set(Role):
    raise RuntimeError(f"Perfis sem capacidades definidas: {set(Role) - set(ROLE_CAPABILITIES)}")


def can(session: SessionContext, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES[session.current_role]


def require(session: SessionContext, capability: Capability) -> None:
    if not can(session, capability):
        raise AuthorizationError(
            "Acesso negado para o perfil atual",
            {"role": session.current_role.value, "capability": capability.value},
        )


def ensure_client_scope(session: SessionContext, client_id: int) -> None:
    """Cliente só acessa os próprios dados; admin acessa todos."""
    if session.current_role is Role.ADMIN:
        return
    if session.current_role is Role.CLIENT and session.user_id == client_id:
        return
    raise AuthorizationError()


def ensure_patient_access(
    s: Session,
    session: SessionContext,
    user_id: int | None = None,
    dependent_id: int | None = None,
    private_patient_id: int | None = None,
) -> None:
    """
    - client: ele mesmo ou seus dependentes
    - professional: seus pacientes particulares ou clientes/dependentes do convênio
    - admin: todos
    """
    role = session.current_role
    if role is Role.ADMIN:
        return

    if role is Role.CLIENT:
        if user_id is not None and user_id == session.user_id:
            return
        if dependent_id is not None:
            owner = s.execute(select(Dependent.client_id).where(Dependent.id == dependent_id)).scalar_one_or_none()
            if owner == session.user_id:
                return
        raise AuthorizationError()

    if private_patient_id is not None:
        owner = s.execute(
            select(PrivatePatient.professional_id).where(PrivatePatient.id == private_patient_id)
        ).scalar_one_or_none()
        if owner is not None and owner != session.user_id:
            raise AuthorizationError("Paciente particular de outro profissional")
    # pacientes do convênio podem ser atendidos por qualquer profissional


def ensure_consultation_access(s: Session, session: SessionContext, consultation: Consultation) -> None:
    role = session.current_role
    if role is Role.ADMIN:
        return
    if role is Role.PROFESSIONAL:
        if consultation.professional_id == session.user_id:
            return
        raise AuthorizationError()
    ensure_patient_access(s, session, user_id=consultation.user_id, dependent_id=consultation.dependent_id)
