from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from .auth_security import hash_password
from .config import ADMIN_CPF, ADMIN_PASSWORD
from .db import db_session
from .models import Role, Service, ServiceCategory, SubscriptionStatus, User


def seed_base() -> None:
    """
    Popula dados mínimos (idempotente):
    - categorias de serviço
    - serviços base
    - administrador
    """
    with db_session() as s:
        categorias = [
            ("Fisioterapia", "Serviços de fisioterapia e reabilitação"),
            ("Psicologia", "Serviços de psicologia e terapia"),
            ("Nutrição", "Serviços de nutrição e dietética"),
        ]
        for nome, descricao in categorias:
            if s.execute(select(ServiceCategory).where(ServiceCategory.name == nome)).scalar_one_or_none() is None:
                s.add(ServiceCategory(name=nome, description=descricao))

        s.flush()

        fisio = s.execute(select(ServiceCategory).where(ServiceCategory.name == "Fisioterapia")).scalar_one()
        servicos = [
            ("Consulta Fisioterapêutica", "Consulta inicial de fisioterapia", Decimal("80.00"), fisio.id),
        ]
        for nome, descricao, preco, cat_id in servicos:
            if s.execute(select(Service).where(Service.name == nome)).scalar_one_or_none() is None:
                s.add(Service(name=nome, description=descricao, base_price=preco, category_id=cat_id,
                              is_base_service=True))

        if s.execute(select(User).where(User.cpf == ADMIN_CPF)).scalar_one_or_none() is None:
            s.add(
                User(
                    name="Administrador",
                    cpf=ADMIN_CPF,
                    password_hash=hash_password(ADMIN_PASSWORD),
                    roles=[Role.ADMIN.value],
                    subscription_status=SubscriptionStatus.ACTIVE,
                )
            )
