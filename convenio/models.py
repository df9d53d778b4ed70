from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class Role(str, enum.Enum):
    CLIENT = "client"
    PROFESSIONAL = "professional"
    ADMIN = "admin"


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"


class ConsultationStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class User(Base):
    """
    Usuário com um ou mais perfis (client, professional, admin).
    - cpf único (apenas dígitos)
    - password_hash com bcrypt (passlib)
    - dados de assinatura usados quando o usuário é cliente do convênio
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cpf: Mapped[str] = mapped_column(String(11), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=lambda: [Role.CLIENT.value])

    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.PENDING, nullable=False
    )
    subscription_expiry: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # campos de profissional
    category_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    crm: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # percentual do profissional sobre consultas do convênio
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("50.00"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    dependents: Mapped[list["Dependent"]] = relationship(back_populates="client", cascade="all, delete-orphan")
    locations: Mapped[list["AttendanceLocation"]] = relationship(
        back_populates="professional", cascade="all, delete-orphan"
    )

    def has_role(self, role: Role | str) -> bool:
        return Role(role).value in (self.roles or [])

    def __repr__(self) -> str:
        return f"User({self.id}, {self.name}, roles={self.roles})"


class Dependent(Base):
    __tablename__ = "dependents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cpf: Mapped[str] = mapped_column(String(11), unique=True, nullable=False)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # assinatura própria, independente da do titular
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.PENDING, nullable=False
    )
    subscription_expiry: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    billing_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("50.00"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    client: Mapped["User"] = relationship(back_populates="dependents")


class PrivatePatient(Base):
    """Paciente particular, cobrado diretamente pelo profissional."""
    __tablename__ = "private_patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    professional_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cpf: Mapped[str | None] = mapped_column(String(11), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class AttendanceLocation(Base):
    __tablename__ = "attendance_locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    professional_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    professional: Mapped["User"] = relationship(back_populates="locations")


class ServiceCategory(Base):
    __tablename__ = "service_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    services: Mapped[list["Service"]] = relationship(back_populates="category")


class Service(Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("service_categories.id"), nullable=True)
    is_base_service: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped["ServiceCategory"] = relationship(back_populates="services")


class Consultation(Base):
    __tablename__ = "consultations"
    __table_args__ = (
        # exatamente um tipo de paciente preenchido
        CheckConstraint(
            "(user_id IS NOT NULL AND dependent_id IS NULL AND private_patient_id IS NULL) OR "
            "(user_id IS NULL AND dependent_id IS NOT NULL AND private_patient_id IS NULL) OR "
            "(user_id IS NULL AND dependent_id IS NULL AND private_patient_id IS NOT NULL)",
            name="check_patient_type",
        ),
        Index("idx_consultations_professional_date", "professional_id", "date"),
        # um horário ativo por profissional; consultas canceladas liberam o horário
        Index(
            "uq_consultation_slot",
            "professional_id",
            "date",
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    dependent_id: Mapped[int | None] = mapped_column(ForeignKey("dependents.id"), nullable=True)
    private_patient_id: Mapped[int | None] = mapped_column(ForeignKey("private_patients.id"), nullable=True)

    professional_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    location_id: Mapped[int | None] = mapped_column(ForeignKey("attendance_locations.id"), nullable=True)

    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    # instante absoluto em UTC (sem tzinfo no banco)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    status: Mapped[ConsultationStatus] = mapped_column(
        Enum(ConsultationStatus), default=ConsultationStatus.SCHEDULED, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    service: Mapped["Service"] = relationship()
    location: Mapped["AttendanceLocation"] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    table_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    record_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class MedicalRecord(Base):
    """Prontuário de paciente particular, visível só para o profissional que o criou."""
    __tablename__ = "medical_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    professional_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    private_patient_id: Mapped[int] = mapped_column(
        ForeignKey("private_patients.id", ondelete="CASCADE"), nullable=False
    )

    chief_complaint: Mapped[str | None] = mapped_column(Text, nullable=True)
    history_present_illness: Mapped[str | None] = mapped_column(Text, nullable=True)
    past_medical_history: Mapped[str | None] = mapped_column(Text, nullable=True)
    medications: Mapped[str | None] = mapped_column(Text, nullable=True)
    allergies: Mapped[str | None] = mapped_column(Text, nullable=True)
    physical_examination: Mapped[str | None] = mapped_column(Text, nullable=True)
    diagnosis: Mapped[str | None] = mapped_column(Text, nullable=True)
    treatment_plan: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    vital_signs: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
