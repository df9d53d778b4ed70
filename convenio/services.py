from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import quote

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import audit
from .auth_service import SessionContext, normalize_cpf
from .db import db_session
from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    AttendanceLocation,
    Consultation,
    ConsultationStatus,
    Dependent,
    PrivatePatient,
    Role,
    Service,
    ServiceCategory,
    SubscriptionStatus,
    User,
)
from .permissions import ensure_consultation_access
from .timeutil import civil_day_bounds, from_storage, to_storage

logger = logging.getLogger(__name__)


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class PatientRef:
    """Referência ao paciente: exatamente um dos três campos preenchido."""
    user_id: int | None = None
    dependent_id: int | None = None
    private_patient_id: int | None = None

    def __post_init__(self) -> None:
        filled = [v for v in (self.user_id, self.dependent_id, self.private_patient_id) if v is not None]
        if len(filled) != 1:
            raise ValidationError("Exatamente um tipo de paciente deve ser especificado")

    @property
    def kind(self) -> str:
        if self.user_id is not None:
            return "client"
        if self.dependent_id is not None:
            return "dependent"
        return "private"

    def as_columns(self) -> dict[str, int | None]:
        return {
            "user_id": self.user_id,
            "dependent_id": self.dependent_id,
            "private_patient_id": self.private_patient_id,
        }


def parse_value(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Valor deve ser um número maior que zero") from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Valor deve ser um número maior que zero")
    return amount.quantize(Decimal("0.01"))


def parse_status(status: ConsultationStatus | str) -> ConsultationStatus:
    try:
        return ConsultationStatus(status)
    except ValueError:
        raise ValidationError("Status inválido", {"status": str(status)}) from None


# =========================
# Validação de referências
# =========================
def check_booking_refs(
    s: Session,
    patient: PatientRef,
    professional_id: int,
    service_id: int,
    location_id: int | None = None,
) -> None:
    """
    Verifica profissional, serviço, local e paciente.
    Pacientes do convênio (titular ou dependente) precisam de assinatura ativa;
    a assinatura do dependente é avaliada de forma independente da do titular.
    """
    prof = s.get(User, professional_id)
    if prof is None or not prof.has_role(Role.PROFESSIONAL):
        raise NotFoundError("Profissional não encontrado")

    if s.get(Service, service_id) is None:
        raise NotFoundError("Serviço não encontrado")

    if location_id is not None:
        loc = s.get(AttendanceLocation, location_id)
        if loc is None or loc.professional_id != professional_id:
            raise NotFoundError("Local de atendimento não encontrado")

    if patient.user_id is not None:
        client = s.get(User, patient.user_id)
        if client is None or not client.has_role(Role.CLIENT):
            raise NotFoundError("Cliente não encontrado")
        if client.subscription_status is not SubscriptionStatus.ACTIVE:
            raise ValidationError("Paciente não possui assinatura ativa")
    elif patient.dependent_id is not None:
        dep = s.get(Dependent, patient.dependent_id)
        if dep is None:
            raise NotFoundError("Dependente não encontrado")
        if dep.subscription_status is not SubscriptionStatus.ACTIVE:
            raise ValidationError("Dependente não possui assinatura ativa")
    else:
        pp = s.get(PrivatePatient, patient.private_patient_id)
        if pp is None or pp.professional_id != professional_id:
            raise NotFoundError("Paciente particular não encontrado")


def _slot_free(s: Session, professional_id: int, when: datetime, exclude_id: int | None = None) -> bool:
    """Sem outra consulta não cancelada do mesmo profissional no mesmo instante."""
    q = select(Consultation.id).where(
        and_(
            Consultation.professional_id == professional_id,
            Consultation.date == when,
            Consultation.status != ConsultationStatus.CANCELLED,
        )
    )
    if exclude_id is not None:
        q = q.where(Consultation.id != exclude_id)
    return s.execute(q.limit(1)).first() is None


def _slot_taken(professional_id: int, when: datetime) -> ConflictError:
    logger.warning("Conflito de horário: profissional=%s data=%s", professional_id, when.isoformat())
    return ConflictError(
        f"Horário já ocupado em {from_storage(when).strftime('%d/%m/%Y %H:%M')}",
        {"date": when.isoformat() + "Z", "professional_id": professional_id},
    )


def _flush_booking(s: Session, c: Consultation) -> None:
    """O índice único do horário barra a gravação concorrente que passou pelo _slot_free."""
    try:
        s.flush()
    except IntegrityError:
        raise _slot_taken(c.professional_id, c.date) from None


def _default_location(s: Session, professional_id: int) -> int | None:
    return s.execute(
        select(AttendanceLocation.id).where(
            AttendanceLocation.professional_id == professional_id,
            AttendanceLocation.is_default.is_(True),
        )
    ).scalar_one_or_none()


# =========================
# Gravação de consultas
# =========================
def create_consultation(
    patient: PatientRef,
    professional_id: int,
    service_id: int,
    when_utc: datetime,
    value: Any,
    location_id: int | None = None,
    notes: str | None = None,
    status: ConsultationStatus | str = ConsultationStatus.SCHEDULED,
    check_refs: bool = True,
) -> Consultation:
    """
    Grava uma consulta em transação própria.
    Sem local informado, usa o local padrão do profissional (se houver).
    Levanta ConflictError se o profissional já tem consulta no mesmo horário.
    """
    amount = parse_value(value)
    status = parse_status(status)
    when = to_storage(when_utc)

    with db_session() as s:
        if check_refs:
            check_booking_refs(s, patient, professional_id, service_id, location_id)
        if location_id is None:
            location_id = _default_location(s, professional_id)

        if status is not ConsultationStatus.CANCELLED and not _slot_free(s, professional_id, when):
            raise _slot_taken(professional_id, when)

        c = Consultation(
            **patient.as_columns(),
            professional_id=professional_id,
            service_id=service_id,
            location_id=location_id,
            value=amount,
            date=when,
            status=status,
            notes=notes.strip() if notes and notes.strip() else None,
        )
        s.add(c)
        _flush_booking(s, c)
        audit.record(s, professional_id, "create_consultation", "consultations", c.id,
                     new_values={"date": when.isoformat(), "patient": patient.kind})
        return c


def _owned_consultation(s: Session, session: SessionContext, consultation_id: int) -> Consultation:
    c = s.get(Consultation, consultation_id)
    if c is None:
        raise NotFoundError("Consulta não encontrada")
    ensure_consultation_access(s, session, c)
    return c


def update_consultation_status(
    session: SessionContext, consultation_id: int, status: ConsultationStatus | str
) -> dict[str, Any]:
    status = parse_status(status)
    with db_session() as s:
        c = _owned_consultation(s, session, consultation_id)
        old = c.status
        # reativar uma consulta cancelada volta a ocupar o horário
        if old is ConsultationStatus.CANCELLED and status is not ConsultationStatus.CANCELLED:
            if not _slot_free(s, c.professional_id, c.date, exclude_id=c.id):
                raise _slot_taken(c.professional_id, c.date)
        c.status = status
        c.updated_at = datetime.utcnow()
        audit.record(s, session.user_id, "update_consultation_status", "consultations", c.id,
                     {"status": old.value}, {"status": status.value})
        _flush_booking(s, c)
        return consultation_flat(s, c)


def update_consultation(
    session: SessionContext,
    consultation_id: int,
    when_utc: datetime | None = None,
    value: Any = None,
    location_id: int | None = None,
    notes: str | None = None,
    status: ConsultationStatus | str | None = None,
) -> dict[str, Any]:
    with db_session() as s:
        c = _owned_consultation(s, session, consultation_id)
        old_status, old_date = c.status, c.date

        if when_utc is not None:
            c.date = to_storage(when_utc)
        if value is not None:
            c.value = parse_value(value)
        if location_id is not None:
            loc = s.get(AttendanceLocation, location_id)
            if loc is None or loc.professional_id != c.professional_id:
                raise NotFoundError("Local de atendimento não encontrado")
            c.location_id = location_id
        if notes is not None:
            c.notes = notes.strip() or None
        if status is not None:
            c.status = parse_status(status)

        occupies_new_slot = c.date != old_date or old_status is ConsultationStatus.CANCELLED
        if c.status is not ConsultationStatus.CANCELLED and occupies_new_slot:
            if not _slot_free(s, c.professional_id, c.date, exclude_id=c.id):
                raise _slot_taken(c.professional_id, c.date)

        c.updated_at = datetime.utcnow()
        _flush_booking(s, c)
        return consultation_flat(s, c)


def delete_consultation(session: SessionContext, consultation_id: int) -> None:
    with db_session() as s:
        c = _owned_consultation(s, session, consultation_id)
        audit.record(s, session.user_id, "delete_consultation", "consultations", c.id,
                     old_values={"date": c.date.isoformat()})
        s.delete(c)


# =========================
# Consultas (leitura)
# =========================
def _patient_name(s: Session, c: Consultation) -> str:
    if c.user_id is not None:
        u = s.get(User, c.user_id)
        return u.name if u else "Paciente não identificado"
    if c.dependent_id is not None:
        d = s.get(Dependent, c.dependent_id)
        return d.name if d else "Paciente não identificado"
    pp = s.get(PrivatePatient, c.private_patient_id)
    return pp.name if pp else "Paciente não identificado"


def consultation_flat(s: Session, c: Consultation) -> dict[str, Any]:
    """Versão 'flat' (dict serializável), sem lazy-load fora da sessão."""
    service = s.get(Service, c.service_id)
    location = s.get(AttendanceLocation, c.location_id) if c.location_id else None
    return {
        "id": c.id,
        "date": c.date.isoformat() + "Z",
        "local_date": from_storage(c.date).isoformat(),
        "value": float(c.value),
        "status": c.status.value,
        "notes": c.notes,
        "professional_id": c.professional_id,
        "service_id": c.service_id,
        "service_name": service.name if service else None,
        "location_id": c.location_id,
        "location_name": location.name if location else None,
        "user_id": c.user_id,
        "dependent_id": c.dependent_id,
        "private_patient_id": c.private_patient_id,
        "client_name": _patient_name(s, c),
        "is_dependent": c.dependent_id is not None,
        "patient_type": "private" if c.private_patient_id is not None else "convenio",
    }


def professional_agenda(professional_id: int, day: date | None = None) -> list[dict[str, Any]]:
    with db_session() as s:
        q = select(Consultation).where(Consultation.professional_id == professional_id)
        if day is not None:
            start, end = civil_day_bounds(day)
            q = q.where(and_(Consultation.date >= start, Consultation.date < end))
        rows = s.scalars(q.order_by(Consultation.date.asc())).all()
        return [consultation_flat(s, c) for c in rows]


def client_consultations(client_id: int) -> list[dict[str, Any]]:
    """Consultas do titular e dos seus dependentes."""
    with db_session() as s:
        dep_ids = select(Dependent.id).where(Dependent.client_id == client_id)
        q = (
            select(Consultation)
            .where((Consultation.user_id == client_id) | (Consultation.dependent_id.in_(dep_ids)))
            .order_by(Consultation.date.desc())
        )
        return [consultation_flat(s, c) for c in s.scalars(q).all()]


def all_consultations() -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.scalars(select(Consultation).order_by(Consultation.date.desc())).all()
        return [consultation_flat(s, c) for c in rows]


def whatsapp_url(session: SessionContext, consultation_id: int) -> str:
    """Link wa.me com mensagem de confirmação para o paciente."""
    with db_session() as s:
        c = _owned_consultation(s, session, consultation_id)

        if c.private_patient_id is not None:
            phone = s.get(PrivatePatient, c.private_patient_id).phone
        elif c.dependent_id is not None:
            phone = s.get(User, s.get(Dependent, c.dependent_id).client_id).phone
        else:
            phone = s.get(User, c.user_id).phone

        if not phone:
            raise ValidationError("Telefone do paciente não encontrado")

        digits = re.sub(r"\D", "", phone)
        if not digits.startswith("55"):
            digits = f"55{digits}"

        local = from_storage(c.date)
        message = (
            f"Olá {_patient_name(s, c)}, sua consulta está confirmada para "
            f"{local.strftime('%d/%m/%Y')} às {local.strftime('%H:%M')}"
        )
        return f"https://wa.me/{digits}?text={quote(message)}"


# =========================
# Clientes e dependentes
# =========================
def lookup_client_by_cpf(cpf: str) -> dict[str, Any]:
    clean = normalize_cpf(cpf)
    with db_session() as s:
        u = s.execute(select(User).where(User.cpf == clean)).scalar_one_or_none()
        if u is None or not u.has_role(Role.CLIENT):
            raise NotFoundError("Cliente não encontrado")
        return {
            "id": u.id,
            "name": u.name,
            "cpf": u.cpf,
            "subscription_status": u.subscription_status.value,
        }


def lookup_dependent_by_cpf(cpf: str) -> dict[str, Any]:
    clean = normalize_cpf(cpf)
    with db_session() as s:
        d = s.execute(select(Dependent).where(Dependent.cpf == clean)).scalar_one_or_none()
        if d is None:
            raise NotFoundError("Dependente não encontrado")
        client = s.get(User, d.client_id)
        return {
            "id": d.id,
            "name": d.name,
            "cpf": d.cpf,
            "client_id": d.client_id,
            "client_name": client.name if client else None,
            "dependent_subscription_status": d.subscription_status.value,
        }


def list_dependents(client_id: int) -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.scalars(select(Dependent).where(Dependent.client_id == client_id).order_by(Dependent.name)).all()
        return [
            {
                "id": d.id,
                "name": d.name,
                "cpf": d.cpf,
                "birth_date": d.birth_date.isoformat() if d.birth_date else None,
                "subscription_status": d.subscription_status.value,
                "subscription_expiry": d.subscription_expiry.isoformat() if d.subscription_expiry else None,
                "billing_amount": float(d.billing_amount),
            }
            for d in rows
        ]


def create_dependent(client_id: int, name: str, cpf: str, birth_date: date | None = None) -> int:
    if not name or not name.strip():
        raise ValidationError("Nome e CPF são obrigatórios")
    clean = normalize_cpf(cpf)

    with db_session() as s:
        client = s.get(User, client_id)
        if client is None or not client.has_role(Role.CLIENT):
            raise NotFoundError("Cliente não encontrado")

        taken = s.execute(select(Dependent.id).where(Dependent.cpf == clean)).first() or s.execute(
            select(User.id).where(User.cpf == clean)
        ).first()
        if taken:
            raise ConflictError("CPF já cadastrado")

        d = Dependent(client_id=client_id, name=name.strip(), cpf=clean, birth_date=birth_date)
        s.add(d)
        s.flush()
        audit.record(s, client_id, "create_dependent", "dependents", d.id)
        return d.id


# =========================
# Serviços e profissionais
# =========================
def list_categories() -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.scalars(select(ServiceCategory).order_by(ServiceCategory.name)).all()
        return [{"id": c.id, "name": c.name, "description": c.description} for c in rows]


def list_services() -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.execute(
            select(
                Service.id,
                Service.name,
                Service.description,
                Service.base_price,
                Service.category_id,
                Service.is_base_service,
                ServiceCategory.name.label("category_name"),
            )
            .outerjoin(ServiceCategory, ServiceCategory.id == Service.category_id)
            .order_by(Service.name)
        ).all()
        return [
            {
                "id": r.id,
                "name": r.name,
                "description": r.description,
                "base_price": float(r.base_price),
                "category_id": r.category_id,
                "category_name": r.category_name,
                "is_base_service": r.is_base_service,
            }
            for r in rows
        ]


def create_service(
    name: str,
    base_price: Any,
    category_id: int | None = None,
    description: str | None = None,
    is_base_service: bool = False,
) -> int:
    if not name or not name.strip():
        raise ValidationError("Nome e preço são obrigatórios")
    price = parse_value(base_price)
    with db_session() as s:
        if category_id is not None and s.get(ServiceCategory, category_id) is None:
            raise NotFoundError("Categoria não encontrada")
        svc = Service(
            name=name.strip(),
            base_price=price,
            category_id=category_id,
            description=description,
            is_base_service=is_base_service,
        )
        s.add(svc)
        s.flush()
        return svc.id


def list_professionals() -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.scalars(select(User).order_by(User.name)).all()
        return [
            {"id": u.id, "name": u.name, "category_name": u.category_name, "phone": u.phone}
            for u in rows
            if u.has_role(Role.PROFESSIONAL)
        ]


def list_clients() -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.scalars(select(User).order_by(User.name)).all()
        return [
            {"id": u.id, "name": u.name, "cpf": u.cpf, "subscription_status": u.subscription_status.value}
            for u in rows
            if u.has_role(Role.CLIENT)
        ]


def set_subscription(
    user_id: int,
    status: SubscriptionStatus | str,
    expiry: datetime | None = None,
    dependent_id: int | None = None,
) -> None:
    """Atualiza a assinatura do titular ou, se informado, de um dependente."""
    try:
        status = SubscriptionStatus(status)
    except ValueError:
        raise ValidationError("Status de assinatura inválido") from None

    with db_session() as s:
        if dependent_id is not None:
            target = s.get(Dependent, dependent_id)
            if target is None or target.client_id != user_id:
                raise NotFoundError("Dependente não encontrado")
        else:
            target = s.get(User, user_id)
            if target is None:
                raise NotFoundError("Usuário não encontrado")
        target.subscription_status = status
        target.subscription_expiry = expiry


def set_professional_percentage(professional_id: int, percentage: Any, actor_id: int | None = None) -> Decimal:
    """Percentual do repasse ao profissional nas consultas do convênio (0 a 100)."""
    try:
        pct = Decimal(str(percentage))
    except (InvalidOperation, ValueError):
        raise ValidationError("Percentual inválido", {"percentage": str(percentage)}) from None
    if not pct.is_finite() or not Decimal("0") <= pct <= Decimal("100"):
        raise ValidationError("Percentual inválido", {"percentage": str(percentage)})
    pct = pct.quantize(Decimal("0.01"))

    with db_session() as s:
        prof = s.get(User, professional_id)
        if prof is None or not prof.has_role(Role.PROFESSIONAL):
            raise NotFoundError("Profissional não encontrado")
        old = prof.percentage
        prof.percentage = pct
        audit.record(s, actor_id, "set_professional_percentage", "users", prof.id,
                     {"percentage": str(old)}, {"percentage": str(pct)})
        return pct


# =========================
# Pacientes particulares e locais
# =========================
def list_private_patients(professional_id: int) -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.scalars(
            select(PrivatePatient)
            .where(PrivatePatient.professional_id == professional_id)
            .order_by(PrivatePatient.name)
        ).all()
        return [{"id": p.id, "name": p.name, "cpf": p.cpf, "email": p.email, "phone": p.phone} for p in rows]


def create_private_patient(
    professional_id: int,
    name: str,
    cpf: str | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> int:
    if not name or not name.strip():
        raise ValidationError("Nome é obrigatório")
    clean_cpf = normalize_cpf(cpf) if cpf else None

    with db_session() as s:
        if clean_cpf:
            dup = s.execute(
                select(PrivatePatient.id).where(
                    PrivatePatient.professional_id == professional_id, PrivatePatient.cpf == clean_cpf
                )
            ).first()
            if dup:
                raise ConflictError("Já existe um paciente cadastrado com este CPF")

        p = PrivatePatient(
            professional_id=professional_id,
            name=name.strip(),
            cpf=clean_cpf,
            email=email.strip() if email else None,
            phone=re.sub(r"\D", "", phone) if phone else None,
        )
        s.add(p)
        s.flush()
        return p.id


def list_locations(professional_id: int) -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.scalars(
            select(AttendanceLocation)
            .where(AttendanceLocation.professional_id == professional_id)
            .order_by(AttendanceLocation.is_default.desc(), AttendanceLocation.name)
        ).all()
        return [
            {"id": loc.id, "name": loc.name, "address": loc.address, "phone": loc.phone, "is_default": loc.is_default}
            for loc in rows
        ]


def create_location(
    professional_id: int,
    name: str,
    address: str | None = None,
    phone: str | None = None,
    is_default: bool = False,
) -> int:
    if not name or not name.strip():
        raise ValidationError("Nome é obrigatório")
    with db_session() as s:
        if is_default:
            # só um local padrão por profissional
            for other in s.scalars(
                select(AttendanceLocation).where(AttendanceLocation.professional_id == professional_id)
            ):
                other.is_default = False
        loc = AttendanceLocation(
            professional_id=professional_id,
            name=name.strip(),
            address=address,
            phone=phone,
            is_default=is_default,
        )
        s.add(loc)
        s.flush()
        return loc.id


def default_location_id(professional_id: int) -> int | None:
    with db_session() as s:
        return _default_location(s, professional_id)
