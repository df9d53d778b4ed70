"""
Relatórios de receita.

Só entram consultas do convênio (titular ou dependente) nas contas de
repasse; consultas canceladas ficam fora. O período é de dias civis
locais, com as duas pontas incluídas.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, or_, select

from .db import db_session
from .errors import NotFoundError, ValidationError
from .models import Consultation, ConsultationStatus, Service, User
from .services import consultation_flat
from .timeutil import civil_day_bounds

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")


def _period(start: date, end: date) -> tuple[datetime, datetime]:
    if start is None or end is None:
        raise ValidationError("Data inicial e final são obrigatórias")
    if end < start:
        raise ValidationError("Data final anterior à data inicial")
    return civil_day_bounds(start)[0], civil_day_bounds(end)[1]


def _in_period(lo: datetime, hi: datetime):
    return and_(
        Consultation.date >= lo,
        Consultation.date < hi,
        Consultation.status != ConsultationStatus.CANCELLED,
    )


def _convenio():
    return or_(Consultation.user_id.is_not(None), Consultation.dependent_id.is_not(None))


def _money(value: Decimal) -> float:
    return float(Decimal(value).quantize(CENTS))


def revenue_report(start: date, end: date) -> dict[str, Any]:
    """Receita do convênio no período, por profissional e por serviço (admin)."""
    lo, hi = _period(start, end)

    with db_session() as s:
        by_prof = s.execute(
            select(
                User.id,
                User.name,
                User.percentage,
                func.coalesce(func.sum(Consultation.value), 0).label("revenue"),
                func.count(Consultation.id).label("consultation_count"),
            )
            .join(Consultation, Consultation.professional_id == User.id)
            .where(_in_period(lo, hi), _convenio())
            .group_by(User.id, User.name, User.percentage)
            .order_by(func.sum(Consultation.value).desc())
        ).all()

        by_service = s.execute(
            select(
                Service.id,
                Service.name,
                func.coalesce(func.sum(Consultation.value), 0).label("revenue"),
                func.count(Consultation.id).label("consultation_count"),
            )
            .join(Consultation, Consultation.service_id == Service.id)
            .where(_in_period(lo, hi), _convenio())
            .group_by(Service.id, Service.name)
            .order_by(func.sum(Consultation.value).desc())
        ).all()

    professionals = []
    total = Decimal("0")
    for r in by_prof:
        revenue = Decimal(r.revenue)
        pct = Decimal(r.percentage)
        total += revenue
        professionals.append(
            {
                "professional_id": r.id,
                "professional_name": r.name,
                "professional_percentage": float(pct),
                "revenue": _money(revenue),
                "consultation_count": r.consultation_count,
                "professional_payment": _money(revenue * pct / HUNDRED),
                "clinic_revenue": _money(revenue * (HUNDRED - pct) / HUNDRED),
            }
        )

    logger.info("Relatório de receita %s a %s: %d profissionais", start, end, len(professionals))
    return {
        "total_revenue": _money(total),
        "revenue_by_professional": professionals,
        "revenue_by_service": [
            {
                "service_id": r.id,
                "service_name": r.name,
                "revenue": _money(Decimal(r.revenue)),
                "consultation_count": r.consultation_count,
            }
            for r in by_service
        ],
    }


def professional_revenue_report(professional_id: int, start: date, end: date) -> dict[str, Any]:
    """
    Extrato do profissional no período.
    amount_to_pay é a parte do convênio sobre as consultas de titulares e
    dependentes; consultas particulares não geram repasse.
    """
    lo, hi = _period(start, end)

    with db_session() as s:
        prof = s.get(User, professional_id)
        if prof is None:
            raise NotFoundError("Profissional não encontrado")
        clinic_share = (HUNDRED - Decimal(prof.percentage)) / HUNDRED

        rows = s.scalars(
            select(Consultation)
            .where(Consultation.professional_id == professional_id, _in_period(lo, hi))
            .order_by(Consultation.date.desc())
        ).all()

        consultations = []
        total = Decimal("0")
        to_pay = Decimal("0")
        for c in rows:
            flat = consultation_flat(s, c)
            due = c.value * clinic_share if flat["patient_type"] == "convenio" else Decimal("0")
            flat["amount_to_pay"] = _money(due)
            consultations.append(flat)
            total += c.value
            to_pay += due

        return {
            "summary": {
                "professional_percentage": float(prof.percentage),
                "total_revenue": _money(total),
                "consultation_count": len(rows),
                "amount_to_pay": _money(to_pay),
            },
            "consultations": consultations,
        }
