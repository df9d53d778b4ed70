from __future__ import annotations

import enum
from datetime import date
from html import escape
from typing import Any, Callable

from .errors import ValidationError


class DocumentKind(str, enum.Enum):
    CERTIFICATE = "certificate"
    PRESCRIPTION = "prescription"
    CONSENT_FORM = "consent_form"
    EXAM_REQUEST = "exam_request"
    DECLARATION = "declaration"
    LGPD = "lgpd"
    MEDICAL_RECORD = "medical_record"
    OTHER = "other"


TITLES: dict[DocumentKind, str] = {
    DocumentKind.CERTIFICATE: "Atestado Médico",
    DocumentKind.PRESCRIPTION: "Receituário",
    DocumentKind.CONSENT_FORM: "Termo de Consentimento",
    DocumentKind.EXAM_REQUEST: "Solicitação de Exames",
    DocumentKind.DECLARATION: "Declaração de Comparecimento",
    DocumentKind.LGPD: "Termo de Consentimento LGPD",
    DocumentKind.MEDICAL_RECORD: "Prontuário",
    DocumentKind.OTHER: "Documento",
}


def _field(data: dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    return escape(str(value)) if value not in (None, "") else default


def _page(kind: DocumentKind, data: dict[str, Any], body: str) -> str:
    title = _field(data, "title", TITLES[kind])
    professional = _field(data, "professionalName", "Profissional")
    specialty = _field(data, "professionalSpecialty")
    crm = _field(data, "crm")
    issued = date.today().strftime("%d/%m/%Y")
    return (
        "<!DOCTYPE html>\n"
        '<html lang="pt-BR">\n'
        f'<head><meta charset="UTF-8"><title>{title}</title></head>\n'
        "<body>\n"
        f'<div class="header"><div class="logo">Convênio Quiro Ferreira</div></div>\n'
        f'<div class="title">{title}</div>\n'
        f'<div class="patient-info"><strong>Paciente:</strong> {_field(data, "patientName")}'
        f'{" - CPF: " + _field(data, "patientCpf") if data.get("patientCpf") else ""}</div>\n'
        f'<div class="content">{body}</div>\n'
        '<div class="signature"><div class="signature-line"></div>'
        f"<div>{professional}</div>"
        f"{f'<div>{specialty}</div>' if specialty else ''}"
        f"{f'<div>Registro: {crm}</div>' if crm else ''}</div>\n"
        f'<div class="footer">Emitido em {issued}</div>\n'
        "</body>\n</html>\n"
    )


def render_certificate(data: dict[str, Any]) -> str:
    days = _field(data, "days", "1")
    body = (
        f"<p>Atesto para os devidos fins que o(a) paciente esteve sob meus cuidados, "
        f"necessitando de afastamento de suas atividades por {days} dia(s).</p>"
        f"<p><strong>Motivo:</strong> {_field(data, 'description', '-')}</p>"
        f"<p><strong>CID:</strong> {_field(data, 'cid', '-')}</p>"
    )
    return _page(DocumentKind.CERTIFICATE, data, body)


def render_prescription(data: dict[str, Any]) -> str:
    body = (
        f"<p><strong>Prescrição:</strong></p><pre>{_field(data, 'prescription')}</pre>"
        f"<p><strong>Orientações:</strong> {_field(data, 'instructions', '-')}</p>"
    )
    return _page(DocumentKind.PRESCRIPTION, data, body)


def render_consent_form(data: dict[str, Any]) -> str:
    body = (
        f"<p><strong>Procedimento:</strong> {_field(data, 'procedure')}</p>"
        f"<p>{_field(data, 'description')}</p>"
        f"<p><strong>Riscos:</strong> {_field(data, 'risks', '-')}</p>"
        "<p>Declaro que fui informado(a) e autorizo a realização do procedimento.</p>"
    )
    return _page(DocumentKind.CONSENT_FORM, data, body)


def render_exam_request(data: dict[str, Any]) -> str:
    body = f"<p>Solicito os seguintes exames:</p><pre>{_field(data, 'content')}</pre>"
    return _page(DocumentKind.EXAM_REQUEST, data, body)


def render_declaration(data: dict[str, Any]) -> str:
    body = (
        "<p>Declaro para os devidos fins que o(a) paciente compareceu a atendimento "
        f"nesta data.</p><p>{_field(data, 'content')}</p>"
    )
    return _page(DocumentKind.DECLARATION, data, body)


def render_lgpd(data: dict[str, Any]) -> str:
    body = (
        "<p>Autorizo o tratamento dos meus dados pessoais e de saúde para fins de "
        "atendimento, conforme a Lei nº 13.709/2018 (LGPD).</p>"
        f"<p>{_field(data, 'content')}</p>"
    )
    return _page(DocumentKind.LGPD, data, body)


RECORD_SECTIONS = (
    ("chief_complaint", "Queixa principal"),
    ("history_present_illness", "História da doença atual"),
    ("past_medical_history", "História médica pregressa"),
    ("medications", "Medicamentos em uso"),
    ("allergies", "Alergias"),
    ("physical_examination", "Exame físico"),
    ("diagnosis", "Diagnóstico"),
    ("treatment_plan", "Plano de tratamento"),
    ("notes", "Observações"),
)


def render_medical_record(data: dict[str, Any]) -> str:
    parts = [
        f"<h3>{label}</h3><p>{_field(data, key)}</p>"
        for key, label in RECORD_SECTIONS
        if data.get(key)
    ]
    vitals = data.get("vital_signs") or {}
    if vitals:
        items = "".join(f"<li>{escape(str(k))}: {escape(str(v))}</li>" for k, v in vitals.items() if v)
        parts.append(f"<h3>Sinais vitais</h3><ul>{items}</ul>")
    return _page(DocumentKind.MEDICAL_RECORD, data, "".join(parts) or "<p>-</p>")


def render_other(data: dict[str, Any]) -> str:
    return _page(DocumentKind.OTHER, data, f"<p>{_field(data, 'content')}</p>")


RENDERERS: dict[DocumentKind, Callable[[dict[str, Any]], str]] = {
    DocumentKind.CERTIFICATE: render_certificate,
    DocumentKind.PRESCRIPTION: render_prescription,
    DocumentKind.CONSENT_FORM: render_consent_form,
    DocumentKind.EXAM_REQUEST: render_exam_request,
    DocumentKind.DECLARATION: render_declaration,
    DocumentKind.LGPD: render_lgpd,
    DocumentKind.MEDICAL_RECORD: render_medical_record,
    DocumentKind.OTHER: render_other,
}

# toda variante precisa de um renderizador
if set(RENDERERS) != set(DocumentKind):
    raise RuntimeError(f"Tipos de documento sem renderizador: {set(DocumentKind) - set(RENDERERS)}")


def render_document(kind: DocumentKind | str, data: dict[str, Any]) -> str:
    try:
        kind = DocumentKind(kind)
    except ValueError:
        raise ValidationError("Tipo de documento inválido", {"document_type": str(kind)}) from None
    return RENDERERS[kind](data)
