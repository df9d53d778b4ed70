from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Callable

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, Field

from convenio import audit
from convenio.auth_service import (
    SessionContext,
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
from convenio.config import CIVIL_UTC_OFFSET_HOURS
from convenio.db import db_session, init_db
from convenio.documents import render_document
from convenio.errors import AuthorizationError, ConvenioError, ValidationError
from convenio.logging_setup import configure_logging
from convenio.models import Role
from convenio.permissions import Capability, ensure_client_scope, ensure_patient_access, require
from convenio.records import (
    create_medical_record,
    delete_medical_record,
    list_medical_records,
    render_medical_record,
    update_medical_record,
)
from convenio.recurrence import RecurrenceRequest, RecurrenceRule, RecurrenceType, create_recurring
from convenio.reports import professional_revenue_report, revenue_report
from convenio.seed import seed_base
from convenio.services import (
    PatientRef,
    all_consultations,
    client_consultations,
    consultation_flat,
    create_consultation,
    create_dependent,
    create_location,
    create_private_patient,
    create_service,
    delete_consultation,
    list_categories,
    list_dependents,
    list_locations,
    list_private_patients,
    list_professionals,
    list_services,
    lookup_client_by_cpf,
    lookup_dependent_by_cpf,
    professional_agenda,
    set_professional_percentage,
    set_subscription,
    update_consultation,
    update_consultation_status,
    whatsapp_url,
)
from convenio.timeutil import civil_timezone

configure_logging()
logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

app = FastAPI(title="Cartão Convênio API", version="2.0.0")


# Startup

@app.on_event("startup")
def startup() -> None:
    # Cria tabelas e seed base (idempotente)
    init_db()
    seed_base()


@app.exception_handler(ConvenioError)
async def convenio_error_handler(request: Request, exc: ConvenioError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # corpo ou query malformados seguem o mesmo formato dos erros do domínio
    fields = sorted({".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()})
    err = ValidationError("Dados inválidos na requisição", {"fields": fields})
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


# Schemas Auth

class RegisterIn(BaseModel):
    name: str
    cpf: str
    password: str
    email: str | None = None
    phone: str | None = None


class LoginIn(BaseModel):
    cpf: str
    password: str


class SelectRoleIn(BaseModel):
    user_id: int
    role: str


class SwitchRoleIn(BaseModel):
    role: str
    user_id: int | None = None


class GrantRoleIn(BaseModel):
    role: str


class SubscriptionIn(BaseModel):
    status: str
    expiry: datetime | None = None
    dependent_id: int | None = None


class PercentageIn(BaseModel):
    percentage: float


# Schemas Domain

class PatientFields(BaseModel):
    user_id: int | None = None
    dependent_id: int | None = None
    private_patient_id: int | None = None

    def patient_ref(self) -> PatientRef:
        return PatientRef(
            user_id=self.user_id,
            dependent_id=self.dependent_id,
            private_patient_id=self.private_patient_id,
        )


class ConsultationIn(PatientFields):
    service_id: int
    value: float
    date: datetime
    location_id: int | None = None
    notes: str | None = None
    status: str = "scheduled"
    professional_id: int | None = None


class RecurringConsultationIn(PatientFields):
    service_id: int
    value: float
    start_date: date
    start_time: time
    recurrence_type: str
    recurrence_interval: int = 1
    end_date: date | None = None
    occurrences: int | None = None
    location_id: int | None = None
    notes: str | None = None
    professional_id: int | None = None
    timezone_offset: int = Field(CIVIL_UTC_OFFSET_HOURS, ge=-23, le=23)


class ConsultationUpdateIn(BaseModel):
    date: datetime | None = None
    value: float | None = None
    location_id: int | None = None
    notes: str | None = None
    status: str | None = None


class StatusIn(BaseModel):
    status: str


class DependentIn(BaseModel):
    name: str
    cpf: str
    birth_date: date | None = None


class PrivatePatientIn(BaseModel):
    name: str = Field(..., min_length=1)
    cpf: str | None = None
    email: str | None = None
    phone: str | None = None


class LocationIn(BaseModel):
    name: str = Field(..., min_length=1)
    address: str | None = None
    phone: str | None = None
    is_default: bool = False


class ServiceIn(BaseModel):
    name: str
    base_price: float
    category_id: int | None = None
    description: str | None = None
    is_base_service: bool = False


class DocumentIn(BaseModel):
    document_type: str
    template_data: dict[str, Any] = Field(default_factory=dict)


class MedicalRecordFields(BaseModel):
    chief_complaint: str | None = None
    history_present_illness: str | None = None
    past_medical_history: str | None = None
    medications: str | None = None
    allergies: str | None = None
    physical_examination: str | None = None
    diagnosis: str | None = None
    treatment_plan: str | None = None
    notes: str | None = None
    vital_signs: dict[str, Any] | None = None


class MedicalRecordIn(MedicalRecordFields):
    private_patient_id: int


class RecordDocumentIn(BaseModel):
    record_id: int
    template_data: dict[str, Any] = Field(default_factory=dict)


# Dependências de auth

def get_session(token: str = Depends(oauth2_scheme)) -> SessionContext:
    # proteção extra: remove espaços / aspas acidentais
    token = token.strip().strip('"').strip("'")
    return session_from_token(token)


def requires(capability: Capability) -> Callable[..., SessionContext]:
    """Dependência que exige a capacidade no perfil ativo da sessão."""

    def dependency(session: SessionContext = Depends(get_session)) -> SessionContext:
        require(session, capability)
        return session

    return dependency


def _civil(dt: datetime) -> datetime:
    """Datas sem fuso chegam no horário civil local."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=civil_timezone())
    return dt


def _professional_for(session: SessionContext, professional_id: int | None) -> int:
    if session.current_role is Role.ADMIN and professional_id is not None:
        return professional_id
    return session.user_id


# AUTH endpoints

@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn) -> dict[str, Any]:
    user_id = register_user(payload.name, payload.cpf, payload.password, payload.email, payload.phone)
    return {"message": "Usuário criado com sucesso", "user_id": user_id}


@app.post("/api/auth/login")
def api_login(payload: LoginIn) -> dict[str, Any]:
    result = login(payload.cpf, payload.password)
    identity = result.identity
    out: dict[str, Any] = {
        "message": "Login realizado com sucesso",
        "user": {
            "id": identity.id,
            "name": identity.name,
            "roles": [r.value for r in identity.roles],
            "subscription_status": identity.subscription_status,
        },
        "needs_role_selection": result.needs_role_selection,
    }
    if result.grant:
        out["token"] = result.grant.token
        out["user"] = result.grant.user
    else:
        out["selection_token"] = result.selection_token
    return out


@app.post("/api/auth/select-role")
def api_select_role(payload: SelectRoleIn, token: str = Depends(oauth2_scheme)) -> dict[str, Any]:
    verify_selection_token(token.strip(), payload.user_id)
    grant = select_role(payload.user_id, payload.role)
    return {"message": "Perfil selecionado com sucesso", "token": grant.token, "user": grant.user}


@app.post("/api/auth/switch-role")
def api_switch_role(payload: SwitchRoleIn, session: SessionContext = Depends(get_session)) -> dict[str, Any]:
    if payload.user_id is not None and payload.user_id != session.user_id:
        raise AuthorizationError()
    grant = switch_role(session, payload.role)
    return {"message": "Perfil alterado com sucesso", "token": grant.token, "user": grant.user}


@app.get("/api/me")
def me(session: SessionContext = Depends(get_session)) -> dict[str, Any]:
    return get_profile(session)


# USERS (admin)

@app.post("/api/users/{user_id}/roles")
def api_grant_role(
    user_id: int, payload: GrantRoleIn, session: SessionContext = Depends(requires(Capability.MANAGE_USERS))
) -> dict[str, Any]:
    return {"roles": grant_role(user_id, payload.role)}


@app.delete("/api/users/{user_id}/roles/{role}")
def api_revoke_role(
    user_id: int, role: str, session: SessionContext = Depends(requires(Capability.MANAGE_USERS))
) -> dict[str, Any]:
    return {"roles": revoke_role(user_id, role)}


@app.put("/api/users/{user_id}/subscription")
def api_set_subscription(
    user_id: int, payload: SubscriptionIn, session: SessionContext = Depends(requires(Capability.MANAGE_USERS))
) -> dict[str, Any]:
    set_subscription(user_id, payload.status, payload.expiry, payload.dependent_id)
    return {"message": "Assinatura atualizada com sucesso"}


@app.put("/api/professionals/{professional_id}/percentage")
def api_set_percentage(
    professional_id: int,
    payload: PercentageIn,
    session: SessionContext = Depends(requires(Capability.MANAGE_USERS)),
) -> dict[str, Any]:
    pct = set_professional_percentage(professional_id, payload.percentage, actor_id=session.user_id)
    return {"message": "Percentual atualizado com sucesso", "percentage": float(pct)}


# CONSULTATIONS

@app.post("/api/consultations", status_code=status.HTTP_201_CREATED)
def api_create_consultation(
    payload: ConsultationIn, session: SessionContext = Depends(requires(Capability.MANAGE_AGENDA))
) -> dict[str, Any]:
    patient = payload.patient_ref()
    with db_session() as s:
        ensure_patient_access(s, session, **patient.as_columns())

    c = create_consultation(
        patient,
        _professional_for(session, payload.professional_id),
        payload.service_id,
        _civil(payload.date),
        payload.value,
        location_id=payload.location_id,
        notes=payload.notes,
        status=payload.status,
    )
    with db_session() as s:
        return {"message": "Consulta criada com sucesso", "consultation": consultation_flat(s, c)}


@app.post("/api/consultations/recurring")
def api_create_recurring(
    payload: RecurringConsultationIn, session: SessionContext = Depends(requires(Capability.MANAGE_AGENDA))
) -> dict[str, Any]:
    try:
        kind = RecurrenceType(payload.recurrence_type)
    except ValueError:
        raise ValidationError("Tipo de recorrência inválido") from None

    rule = RecurrenceRule(
        start_date=payload.start_date,
        start_time=payload.start_time,
        recurrence_type=kind,
        interval=payload.recurrence_interval,
        end_date=payload.end_date,
        occurrences=payload.occurrences,
    )
    request = RecurrenceRequest(
        rule=rule,
        patient=payload.patient_ref(),
        service_id=payload.service_id,
        value=payload.value,
        location_id=payload.location_id,
        notes=payload.notes,
        professional_id=payload.professional_id,
    )
    result = create_recurring(session, request, utc_offset_hours=payload.timezone_offset)
    out = result.to_dict()
    out["message"] = f"{result.created_count} consultas recorrentes criadas com sucesso"
    return out


@app.get("/api/consultations/agenda")
def api_agenda(
    day: date | None = Query(None, alias="date"),
    professional_id: int | None = Query(None),
    session: SessionContext = Depends(requires(Capability.MANAGE_AGENDA)),
) -> list[dict]:
    return professional_agenda(_professional_for(session, professional_id), day)


@app.get("/api/consultations")
def api_all_consultations(
    session: SessionContext = Depends(requires(Capability.VIEW_ALL_CONSULTATIONS)),
) -> list[dict]:
    return all_consultations()


@app.get("/api/consultations/client/{client_id}")
def api_client_consultations(
    client_id: int, session: SessionContext = Depends(requires(Capability.VIEW_OWN_CONSULTATIONS))
) -> list[dict]:
    ensure_client_scope(session, client_id)
    return client_consultations(client_id)


@app.put("/api/consultations/{consultation_id}/status")
def api_update_status(
    consultation_id: int, payload: StatusIn, session: SessionContext = Depends(requires(Capability.MANAGE_AGENDA))
) -> dict[str, Any]:
    c = update_consultation_status(session, consultation_id, payload.status)
    return {"message": "Status da consulta atualizado com sucesso", "consultation": c}


@app.put("/api/consultations/{consultation_id}")
def api_update_consultation(
    consultation_id: int,
    payload: ConsultationUpdateIn,
    session: SessionContext = Depends(requires(Capability.MANAGE_AGENDA)),
) -> dict[str, Any]:
    c = update_consultation(
        session,
        consultation_id,
        when_utc=_civil(payload.date) if payload.date else None,
        value=payload.value,
        location_id=payload.location_id,
        notes=payload.notes,
        status=payload.status,
    )
    return {"message": "Consulta atualizada com sucesso", "consultation": c}


@app.delete("/api/consultations/{consultation_id}")
def api_delete_consultation(
    consultation_id: int, session: SessionContext = Depends(requires(Capability.MANAGE_AGENDA))
) -> dict[str, Any]:
    delete_consultation(session, consultation_id)
    return {"message": "Consulta excluída com sucesso"}


@app.get("/api/consultations/{consultation_id}/whatsapp")
def api_whatsapp(
    consultation_id: int, session: SessionContext = Depends(requires(Capability.MANAGE_AGENDA))
) -> dict[str, Any]:
    return {"whatsapp_url": whatsapp_url(session, consultation_id)}


# CLIENTS / DEPENDENTS

@app.get("/api/clients/lookup")
def api_client_lookup(
    cpf: str = Query(...), session: SessionContext = Depends(requires(Capability.LOOKUP_CLIENTS))
) -> dict[str, Any]:
    return lookup_client_by_cpf(cpf)


@app.get("/api/dependents/lookup")
def api_dependent_lookup(
    cpf: str = Query(...), session: SessionContext = Depends(requires(Capability.LOOKUP_CLIENTS))
) -> dict[str, Any]:
    return lookup_dependent_by_cpf(cpf)


@app.get("/api/dependents/{client_id}")
def api_dependents(client_id: int, session: SessionContext = Depends(get_session)) -> list[dict]:
    if session.current_role is Role.CLIENT:
        ensure_client_scope(session, client_id)
    else:
        require(session, Capability.LOOKUP_CLIENTS)
    return list_dependents(client_id)


@app.post("/api/dependents", status_code=status.HTTP_201_CREATED)
def api_create_dependent(
    payload: DependentIn, session: SessionContext = Depends(requires(Capability.MANAGE_DEPENDENTS))
) -> dict[str, Any]:
    dep_id = create_dependent(session.user_id, payload.name, payload.cpf, payload.birth_date)
    return {"message": "Dependente criado com sucesso", "dependent_id": dep_id}


# SERVICES / PROFESSIONALS

@app.get("/api/services")
def api_services(session: SessionContext = Depends(get_session)) -> list[dict]:
    return list_services()


@app.get("/api/service-categories")
def api_categories(session: SessionContext = Depends(get_session)) -> list[dict]:
    return list_categories()


@app.post("/api/services", status_code=status.HTTP_201_CREATED)
def api_create_service(
    payload: ServiceIn, session: SessionContext = Depends(requires(Capability.MANAGE_SERVICES))
) -> dict[str, Any]:
    sid = create_service(
        payload.name, payload.base_price, payload.category_id, payload.description, payload.is_base_service
    )
    return {"message": "Serviço criado com sucesso", "service_id": sid}


@app.get("/api/professionals")
def api_professionals(session: SessionContext = Depends(get_session)) -> list[dict]:
    return list_professionals()


# PRIVATE PATIENTS / LOCATIONS

@app.get("/api/private-patients")
def api_private_patients(
    session: SessionContext = Depends(requires(Capability.MANAGE_PRIVATE_PATIENTS)),
) -> list[dict]:
    return list_private_patients(session.user_id)


@app.post("/api/private-patients", status_code=status.HTTP_201_CREATED)
def api_create_private_patient(
    payload: PrivatePatientIn, session: SessionContext = Depends(requires(Capability.MANAGE_PRIVATE_PATIENTS))
) -> dict[str, Any]:
    pid = create_private_patient(session.user_id, payload.name, payload.cpf, payload.email, payload.phone)
    return {"message": "Paciente criado com sucesso", "patient_id": pid}


@app.get("/api/attendance-locations")
def api_locations(session: SessionContext = Depends(requires(Capability.MANAGE_LOCATIONS))) -> list[dict]:
    return list_locations(session.user_id)


@app.post("/api/attendance-locations", status_code=status.HTTP_201_CREATED)
def api_create_location(
    payload: LocationIn, session: SessionContext = Depends(requires(Capability.MANAGE_LOCATIONS))
) -> dict[str, Any]:
    loc_id = create_location(session.user_id, payload.name, payload.address, payload.phone, payload.is_default)
    return {"message": "Local criado com sucesso", "location_id": loc_id}


# DOCUMENTS

@app.post("/api/documents/render")
def api_render_document(
    payload: DocumentIn, session: SessionContext = Depends(requires(Capability.GENERATE_DOCUMENTS))
) -> dict[str, Any]:
    return {"document_type": payload.document_type, "html": render_document(payload.document_type, payload.template_data)}


# MEDICAL RECORDS

@app.get("/api/medical-records")
def api_medical_records(
    session: SessionContext = Depends(requires(Capability.MANAGE_MEDICAL_RECORDS)),
) -> list[dict]:
    return list_medical_records(session.user_id)


@app.post("/api/medical-records", status_code=status.HTTP_201_CREATED)
def api_create_medical_record(
    payload: MedicalRecordIn, session: SessionContext = Depends(requires(Capability.MANAGE_MEDICAL_RECORDS))
) -> dict[str, Any]:
    record = create_medical_record(
        session.user_id, payload.private_patient_id, payload.model_dump(exclude={"private_patient_id"})
    )
    return {"message": "Prontuário criado com sucesso", "record": record}


@app.post("/api/medical-records/generate-document")
def api_medical_record_document(
    payload: RecordDocumentIn, session: SessionContext = Depends(requires(Capability.MANAGE_MEDICAL_RECORDS))
) -> dict[str, Any]:
    doc = render_medical_record(session.user_id, payload.record_id, payload.template_data)
    return {"message": "Documento gerado com sucesso", **doc}


@app.put("/api/medical-records/{record_id}")
def api_update_medical_record(
    record_id: int,
    payload: MedicalRecordFields,
    session: SessionContext = Depends(requires(Capability.MANAGE_MEDICAL_RECORDS)),
) -> dict[str, Any]:
    record = update_medical_record(session.user_id, record_id, payload.model_dump())
    return {"message": "Prontuário atualizado com sucesso", "record": record}


@app.delete("/api/medical-records/{record_id}")
def api_delete_medical_record(
    record_id: int, session: SessionContext = Depends(requires(Capability.MANAGE_MEDICAL_RECORDS))
) -> dict[str, Any]:
    delete_medical_record(session.user_id, record_id)
    return {"message": "Prontuário excluído com sucesso"}


# REPORTS

@app.get("/api/reports/revenue")
def api_revenue_report(
    start_date: date = Query(...),
    end_date: date = Query(...),
    session: SessionContext = Depends(requires(Capability.VIEW_REVENUE_REPORTS)),
) -> dict[str, Any]:
    return revenue_report(start_date, end_date)


@app.get("/api/reports/professional-revenue")
def api_professional_revenue(
    start_date: date = Query(...),
    end_date: date = Query(...),
    professional_id: int | None = Query(None),
    session: SessionContext = Depends(requires(Capability.VIEW_OWN_REVENUE)),
) -> dict[str, Any]:
    return professional_revenue_report(_professional_for(session, professional_id), start_date, end_date)


# AUDIT / HEALTH

@app.get("/api/audit-logs")
def api_audit_logs(
    page: int = 1,
    limit: int = 50,
    user_id: int | None = None,
    action: str | None = None,
    session: SessionContext = Depends(requires(Capability.VIEW_AUDIT_LOGS)),
) -> dict[str, Any]:
    return audit.list_audit_logs(page=page, limit=limit, user_id=user_id, action=action)


@app.get("/api/health")
def health() -> dict[str, Any]:
    return {"status": "OK", "timestamp": datetime.utcnow().isoformat() + "Z", "version": app.version}
