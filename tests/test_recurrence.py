"""
Testes da expansão de recorrências e da gravação em lote.
"""

from datetime import date, datetime, time, timezone

import pytest
from sqlalchemy import func, select

from convenio.db import db_session
from convenio.errors import AuthorizationError, NotFoundError, ValidationError
from convenio.models import Consultation, Role
from convenio.recurrence import (
    RecurrenceRequest,
    RecurrenceRule,
    RecurrenceType,
    create_recurring,
    expand,
    validate_rule,
)
from convenio.services import PatientRef, create_consultation
from tests.conftest import make_session


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def count_consultations() -> int:
    with db_session() as s:
        return s.execute(select(func.count(Consultation.id))).scalar_one()


class TestExpand:
    """Tests for expand()."""

    def test_monthly_from_31st_clamps_then_resets(self):
        rule = RecurrenceRule(date(2024, 1, 31), time(9, 0), RecurrenceType.MONTHLY, occurrences=3)
        assert expand(rule, utc_offset_hours=-3) == [
            utc(2024, 1, 31, 12, 0),
            utc(2024, 2, 29, 12, 0),
            utc(2024, 3, 31, 12, 0),
        ]

    def test_monthly_non_leap_year(self):
        rule = RecurrenceRule(date(2023, 1, 31), time(9, 0), RecurrenceType.MONTHLY, occurrences=2)
        assert expand(rule, utc_offset_hours=-3)[1] == utc(2023, 2, 28, 12, 0)

    def test_weekly_with_interval(self):
        rule = RecurrenceRule(date(2024, 3, 1), time(14, 30), RecurrenceType.WEEKLY, interval=2, occurrences=3)
        result = expand(rule, utc_offset_hours=-3)
        assert [d.date() for d in result] == [date(2024, 3, 1), date(2024, 3, 15), date(2024, 3, 29)]
        assert all(d.hour == 17 and d.minute == 30 for d in result)

    def test_end_date_is_inclusive(self):
        rule = RecurrenceRule(date(2024, 3, 1), time(9, 0), RecurrenceType.WEEKLY, end_date=date(2024, 3, 15))
        assert len(expand(rule, utc_offset_hours=-3)) == 3

    def test_end_date_compared_on_local_day(self):
        """22:00 local já é o dia seguinte em UTC, mas o limite vale para o dia civil."""
        rule = RecurrenceRule(date(2024, 1, 1), time(22, 0), RecurrenceType.DAILY, end_date=date(2024, 1, 2))
        result = expand(rule, utc_offset_hours=-3)
        assert result == [utc(2024, 1, 2, 1, 0), utc(2024, 1, 3, 1, 0)]

    def test_end_date_and_occurrences_intersect(self):
        rule = RecurrenceRule(
            date(2024, 1, 1), time(9, 0), RecurrenceType.DAILY, end_date=date(2024, 1, 3), occurrences=10
        )
        assert len(expand(rule, utc_offset_hours=-3)) == 3

        rule = RecurrenceRule(
            date(2024, 1, 1), time(9, 0), RecurrenceType.DAILY, end_date=date(2024, 12, 31), occurrences=5
        )
        assert len(expand(rule, utc_offset_hours=-3)) == 5

    def test_end_date_only_is_capped(self):
        rule = RecurrenceRule(date(2024, 1, 1), time(9, 0), RecurrenceType.DAILY, end_date=date(2030, 1, 1))
        assert len(expand(rule, utc_offset_hours=-3, cap=100)) == 100

    def test_strictly_increasing(self):
        rule = RecurrenceRule(date(2024, 1, 29), time(8, 0), RecurrenceType.MONTHLY, occurrences=24)
        result = expand(rule, utc_offset_hours=-3)
        assert all(a < b for a, b in zip(result, result[1:]))

    def test_first_instance_is_start(self):
        rule = RecurrenceRule(date(2024, 6, 10), time(10, 0), RecurrenceType.WEEKLY, occurrences=1)
        assert expand(rule, utc_offset_hours=-3) == [utc(2024, 6, 10, 13, 0)]

    @pytest.mark.parametrize("offset", [24, 30, -24])
    def test_offset_out_of_range(self, offset):
        rule = RecurrenceRule(date(2024, 3, 1), time(9, 0), RecurrenceType.DAILY, occurrences=2)
        with pytest.raises(ValidationError) as exc:
            expand(rule, utc_offset_hours=offset)
        assert exc.value.message == "Fuso horário inválido"

    def test_offset_limits_are_valid(self):
        rule = RecurrenceRule(date(2024, 3, 1), time(9, 0), RecurrenceType.DAILY, occurrences=1)
        assert expand(rule, utc_offset_hours=23) == [utc(2024, 2, 29, 10, 0)]
        assert expand(rule, utc_offset_hours=-23) == [utc(2024, 3, 2, 8, 0)]


class TestValidateRule:
    """Tests for validate_rule()."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"interval": 0, "occurrences": 3},
            {"interval": -1, "occurrences": 3},
            {"occurrences": 0},
            {"occurrences": -2},
            {"occurrences": 101},
            {},
            {"end_date": date(2023, 12, 31)},
        ],
    )
    def test_invalid_rules(self, kwargs):
        rule = RecurrenceRule(date(2024, 1, 1), time(9, 0), RecurrenceType.DAILY, **kwargs)
        with pytest.raises(ValidationError):
            validate_rule(rule, cap=100)

    def test_unknown_type(self):
        rule = RecurrenceRule(date(2024, 1, 1), time(9, 0), "yearly", occurrences=2)
        with pytest.raises(ValidationError):
            validate_rule(rule)

    def test_end_date_equal_to_start_is_valid(self):
        rule = RecurrenceRule(date(2024, 1, 1), time(9, 0), RecurrenceType.DAILY, end_date=date(2024, 1, 1))
        validate_rule(rule)
        assert len(expand(rule)) == 1


class TestCreateRecurring:
    """Tests for create_recurring()."""

    def _request(self, patient: PatientRef, service_id: int, **rule_kwargs) -> RecurrenceRequest:
        params = {"occurrences": 5, **rule_kwargs}
        rule = RecurrenceRule(date(2024, 5, 6), time(10, 0), RecurrenceType.WEEKLY, **params)
        return RecurrenceRequest(rule=rule, patient=patient, service_id=service_id, value="120.00")

    def test_creates_all_instances(self, professional_session, private_patient_id, service_id):
        request = self._request(PatientRef(private_patient_id=private_patient_id), service_id)

        result = create_recurring(professional_session, request, utc_offset_hours=-3)

        assert result.created_count == 5
        assert result.failed_count == 0
        assert result.first_error is None
        assert len(result.consultation_ids) == 5
        assert count_consultations() == 5

    def test_conflict_keeps_other_instances(
        self, professional_id, professional_session, private_patient_id, service_id
    ):
        patient = PatientRef(private_patient_id=private_patient_id)
        # terceira ocorrência: 20/05 10:00 local
        create_consultation(patient, professional_id, service_id, utc(2024, 5, 20, 13, 0), 100)

        result = create_recurring(professional_session, self._request(patient, service_id), utc_offset_hours=-3)

        assert result.created_count == 4
        assert result.failed_count == 1
        assert result.first_error["index"] == 3
        assert result.first_error["kind"] == "conflict"
        assert "20/05/2024 10:00" in result.first_error["message"]
        assert count_consultations() == 5

    def test_unique_index_conflict_is_recorded(
        self, monkeypatch, professional_id, professional_session, private_patient_id, service_id
    ):
        patient = PatientRef(private_patient_id=private_patient_id)
        create_consultation(patient, professional_id, service_id, utc(2024, 5, 13, 13, 0), 100)
        monkeypatch.setattr("convenio.services._slot_free", lambda *args, **kwargs: True)

        result = create_recurring(professional_session, self._request(patient, service_id), utc_offset_hours=-3)

        assert result.created_count == 4
        assert result.first_error["index"] == 2
        assert result.first_error["kind"] == "conflict"
        assert count_consultations() == 5

    def test_invalid_interval_writes_nothing(self, professional_session, private_patient_id, service_id):
        request = self._request(PatientRef(private_patient_id=private_patient_id), service_id, interval=0)

        with pytest.raises(ValidationError):
            create_recurring(professional_session, request)

        assert count_consultations() == 0

    def test_invalid_value_writes_nothing(self, professional_session, private_patient_id, service_id):
        rule = RecurrenceRule(date(2024, 5, 6), time(10, 0), RecurrenceType.DAILY, occurrences=3)
        request = RecurrenceRequest(
            rule=rule, patient=PatientRef(private_patient_id=private_patient_id), service_id=service_id, value=0
        )

        with pytest.raises(ValidationError):
            create_recurring(professional_session, request)

        assert count_consultations() == 0

    def test_inactive_client_writes_nothing(self, professional_session, service_id):
        from convenio.auth_service import register_user

        pending = register_user("Sem Assinatura", "66666666666", "segredo1")
        request = self._request(PatientRef(user_id=pending), service_id)

        with pytest.raises(ValidationError):
            create_recurring(professional_session, request)

        assert count_consultations() == 0

    def test_unknown_service_writes_nothing(self, professional_session, private_patient_id):
        request = self._request(PatientRef(private_patient_id=private_patient_id), 999)

        with pytest.raises(NotFoundError):
            create_recurring(professional_session, request)

        assert count_consultations() == 0

    def test_other_professionals_private_patient(
        self, other_professional_id, private_patient_id, service_id
    ):
        session = make_session(other_professional_id, Role.PROFESSIONAL)
        request = self._request(PatientRef(private_patient_id=private_patient_id), service_id)

        with pytest.raises(AuthorizationError):
            create_recurring(session, request)

        assert count_consultations() == 0

    def test_professional_cannot_book_for_someone_else(
        self, other_professional_id, professional_session, client_id, service_id
    ):
        rule = RecurrenceRule(date(2024, 5, 6), time(10, 0), RecurrenceType.DAILY, occurrences=2)
        request = RecurrenceRequest(
            rule=rule,
            patient=PatientRef(user_id=client_id),
            service_id=service_id,
            value=80,
            professional_id=other_professional_id,
        )

        result = create_recurring(professional_session, request)

        with db_session() as s:
            owners = set(s.scalars(select(Consultation.professional_id)).all())
        assert result.created_count == 2
        assert owners == {professional_session.user_id}

    def test_admin_books_for_professional(self, admin_session, professional_id, client_id, service_id):
        rule = RecurrenceRule(date(2024, 5, 6), time(10, 0), RecurrenceType.DAILY, occurrences=2)
        request = RecurrenceRequest(
            rule=rule,
            patient=PatientRef(user_id=client_id),
            service_id=service_id,
            value=80,
            professional_id=professional_id,
        )

        result = create_recurring(admin_session, request)

        assert result.created_count == 2
        with db_session() as s:
            assert set(s.scalars(select(Consultation.professional_id)).all()) == {professional_id}
