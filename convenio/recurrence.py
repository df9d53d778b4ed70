"""
Expansão de consultas recorrentes.

Uma regra (início, tipo, intervalo, data final e/ou número de ocorrências)
vira uma lista finita e ordenada de instantes UTC. Cada instante é gravado
em sequência pelo `create_consultation`; conflitos de horário não
interrompem o lote.

Política de meses: a ocorrência k é calculada a partir da data inicial
(início + k * intervalo meses), com o dia limitado ao último dia do mês
de destino. Assim 31/01 -> 29/02 -> 31/03 (o dia original volta a valer
quando o mês comporta).
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from dateutil.relativedelta import relativedelta

from .auth_service import SessionContext
from .config import CIVIL_UTC_OFFSET_HOURS, MAX_OCCURRENCES
from .db import db_session
from .errors import ConflictError, ValidationError
from .models import Role
from .permissions import ensure_patient_access
from .services import PatientRef, check_booking_refs, create_consultation, parse_value
from .timeutil import civil_timezone

logger = logging.getLogger(__name__)


class RecurrenceType(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurrenceRule:
    start_date: date
    start_time: time
    recurrence_type: RecurrenceType
    interval: int = 1
    end_date: date | None = None
    occurrences: int | None = None


@dataclass(frozen=True)
class RecurrenceRequest:
    rule: RecurrenceRule
    patient: PatientRef
    service_id: int
    value: object
    location_id: int | None = None
    notes: str | None = None
    professional_id: int | None = None


@dataclass
class RecurrenceResult:
    created_count: int = 0
    first_error: dict | None = None
    consultation_ids: list[int] = field(default_factory=list)
    failed_count: int = 0

    def to_dict(self) -> dict:
        return {
            "created_count": self.created_count,
            "first_error": self.first_error,
            "consultation_ids": list(self.consultation_ids),
            "failed_count": self.failed_count,
        }


def validate_rule(rule: RecurrenceRule, cap: int = MAX_OCCURRENCES) -> None:
    try:
        RecurrenceType(rule.recurrence_type)
    except ValueError:
        raise ValidationError("Tipo de recorrência inválido") from None

    if not isinstance(rule.interval, int) or rule.interval < 1:
        raise ValidationError("Intervalo de recorrência deve ser maior ou igual a 1")

    if rule.occurrences is None and rule.end_date is None:
        raise ValidationError("Informe a data final ou o número de ocorrências")

    if rule.occurrences is not None:
        if rule.occurrences <= 0:
            raise ValidationError("Número de ocorrências deve ser maior que zero")
        if rule.occurrences > cap:
            raise ValidationError(f"Número máximo de ocorrências é {cap}")

    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise ValidationError("Data final anterior à data inicial")


def _step(rule: RecurrenceRule, k: int) -> relativedelta | timedelta:
    n = k * rule.interval
    kind = RecurrenceType(rule.recurrence_type)
    if kind is RecurrenceType.DAILY:
        return timedelta(days=n)
    if kind is RecurrenceType.WEEKLY:
        return timedelta(weeks=n)
    return relativedelta(months=n)


def expand(
    rule: RecurrenceRule,
    utc_offset_hours: int = CIVIL_UTC_OFFSET_HOURS,
    cap: int = MAX_OCCURRENCES,
) -> list[datetime]:
    """
    Gera os instantes (UTC, aware) da regra.
    Para no primeiro candidato após a data final ou ao atingir o número de
    ocorrências, o que vier primeiro; nunca passa de `cap`.
    """
    validate_rule(rule, cap)

    tz = civil_timezone(utc_offset_hours)
    limit = min(rule.occurrences or cap, cap)
    start_local = datetime.combine(rule.start_date, rule.start_time.replace(tzinfo=None))

    out: list[datetime] = []
    for k in range(limit):
        local = start_local + _step(rule, k)
        if rule.end_date is not None and local.date() > rule.end_date:
            break
        out.append(local.replace(tzinfo=tz).astimezone(timezone.utc))
    return out


def create_recurring(
    session: SessionContext,
    request: RecurrenceRequest,
    utc_offset_hours: int = CIVIL_UTC_OFFSET_HOURS,
    cap: int = MAX_OCCURRENCES,
) -> RecurrenceResult:
    """
    Valida tudo antes de gravar (nada é escrito se regra, paciente ou
    permissões forem inválidos) e depois grava uma consulta por ocorrência,
    em sequência. Ocorrências já gravadas são mantidas quando uma posterior
    falha; o resultado traz a contagem e o primeiro erro.
    """
    professional_id = request.professional_id
    if session.current_role is Role.PROFESSIONAL or professional_id is None:
        professional_id = session.user_id

    instants = expand(request.rule, utc_offset_hours, cap)
    parse_value(request.value)

    with db_session() as s:
        ensure_patient_access(s, session, **request.patient.as_columns())
        check_booking_refs(s, request.patient, professional_id, request.service_id, request.location_id)

    logger.info(
        "Criando consultas recorrentes: profissional=%s tipo=%s ocorrências=%d",
        professional_id,
        RecurrenceType(request.rule.recurrence_type).value,
        len(instants),
    )

    result = RecurrenceResult()
    for index, when in enumerate(instants, start=1):
        try:
            c = create_consultation(
                request.patient,
                professional_id,
                request.service_id,
                when,
                request.value,
                location_id=request.location_id,
                notes=request.notes,
                check_refs=False,
            )
        except ConflictError as e:
            result.failed_count += 1
            if result.first_error is None:
                result.first_error = {
                    "index": index,
                    "date": when.isoformat(),
                    "kind": e.kind,
                    "message": e.message,
                }
            continue
        result.created_count += 1
        result.consultation_ids.append(c.id)

    logger.info(
        "Consultas recorrentes criadas: %d de %d (primeiro erro: %s)",
        result.created_count,
        len(instants),
        result.first_error["message"] if result.first_error else "-",
    )
    return result
