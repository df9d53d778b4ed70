"""
Prontuários de pacientes particulares.

Cada prontuário pertence ao profissional que o criou; nenhum outro perfil
lê ou altera o registro. O documento do prontuário é gerado pelo mesmo
despacho de `documents.render_document`.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import audit
from .db import db_session
from .documents import DocumentKind, render_document
from .errors import NotFoundError, ValidationError
from .models import MedicalRecord, PrivatePatient

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    "chief_complaint",
    "history_present_illness",
    "past_medical_history",
    "medications",
    "allergies",
    "physical_examination",
    "diagnosis",
    "treatment_plan",
    "notes",
)


def _clean(fields: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in TEXT_FIELDS:
        value = fields.get(key)
        if isinstance(value, str) and value.strip():
            out[key] = value.strip()
        else:
            out[key] = None
    vitals = fields.get("vital_signs")
    if vitals is not None and not isinstance(vitals, dict):
        raise ValidationError("Sinais vitais inválidos")
    out["vital_signs"] = vitals or None
    return out


def _record_flat(r: MedicalRecord, patient: PrivatePatient | None) -> dict[str, Any]:
    out = {
        "id": r.id,
        "professional_id": r.professional_id,
        "private_patient_id": r.private_patient_id,
        "patient_name": patient.name if patient else None,
        "vital_signs": r.vital_signs,
        "created_at": r.created_at.isoformat(),
        "updated_at": r.updated_at.isoformat(),
    }
    out.update({key: getattr(r, key) for key in TEXT_FIELDS})
    return out


def _owned_record(s: Session, professional_id: int, record_id: int) -> MedicalRecord:
    r = s.get(MedicalRecord, record_id)
    if r is None or r.professional_id != professional_id:
        raise NotFoundError("Prontuário não encontrado")
    return r


def list_medical_records(professional_id: int) -> list[dict[str, Any]]:
    with db_session() as s:
        rows = s.execute(
            select(MedicalRecord, PrivatePatient)
            .join(PrivatePatient, PrivatePatient.id == MedicalRecord.private_patient_id)
            .where(MedicalRecord.professional_id == professional_id)
            .order_by(MedicalRecord.created_at.desc(), MedicalRecord.id.desc())
        ).all()
        return [_record_flat(r, p) for r, p in rows]


def create_medical_record(professional_id: int, private_patient_id: int | None, fields: dict[str, Any]) -> dict[str, Any]:
    if not private_patient_id:
        raise ValidationError("Paciente é obrigatório")
    values = _clean(fields)

    with db_session() as s:
        patient = s.get(PrivatePatient, private_patient_id)
        if patient is None or patient.professional_id != professional_id:
            raise NotFoundError("Paciente não encontrado")

        r = MedicalRecord(professional_id=professional_id, private_patient_id=private_patient_id, **values)
        s.add(r)
        s.flush()
        audit.record(s, professional_id, "create_medical_record", "medical_records", r.id)
        logger.info("Prontuário criado: %s", r.id)
        return _record_flat(r, patient)


def update_medical_record(professional_id: int, record_id: int, fields: dict[str, Any]) -> dict[str, Any]:
    """Substitui todos os campos clínicos do prontuário."""
    values = _clean(fields)
    with db_session() as s:
        r = _owned_record(s, professional_id, record_id)
        for key, value in values.items():
            setattr(r, key, value)
        r.updated_at = datetime.utcnow()
        audit.record(s, professional_id, "update_medical_record", "medical_records", r.id)
        s.flush()
        return _record_flat(r, s.get(PrivatePatient, r.private_patient_id))


def delete_medical_record(professional_id: int, record_id: int) -> None:
    with db_session() as s:
        r = _owned_record(s, professional_id, record_id)
        audit.record(s, professional_id, "delete_medical_record", "medical_records", r.id)
        s.delete(r)


def render_medical_record(professional_id: int, record_id: int, template_data: dict[str, Any]) -> dict[str, Any]:
    with db_session() as s:
        r = _owned_record(s, professional_id, record_id)
        patient = s.get(PrivatePatient, r.private_patient_id)

        data = dict(template_data)
        data.update(patientName=patient.name, patientCpf=patient.cpf)
        data.update({key: getattr(r, key) for key in TEXT_FIELDS})
        data["vital_signs"] = r.vital_signs

        html = render_document(DocumentKind.MEDICAL_RECORD, data)
        audit.record(s, professional_id, "generate_medical_record_document", "medical_records", r.id)
        return {"title": f"Prontuário - {patient.name}", "document_type": DocumentKind.MEDICAL_RECORD.value, "html": html}
