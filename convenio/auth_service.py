from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select

from . import audit
from .auth_security import (
    SELECTION_SCOPE,
    create_access_token,
    create_selection_token,
    get_claims,
    hash_password,
    verify_password,
)
from .db import db_session
from .errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import Role, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Sessão autenticada: um usuário e exatamente um perfil ativo."""
    user_id: int
    name: str
    roles: tuple[Role, ...]
    current_role: Role


@dataclass(frozen=True)
class UserIdentity:
    id: int
    name: str
    roles: tuple[Role, ...]
    subscription_status: str
    subscription_expiry: datetime | None = None


@dataclass(frozen=True)
class SessionGrant:
    token: str
    session: SessionContext
    user: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LoginResult:
    identity: UserIdentity
    grant: SessionGrant | None
    selection_token: str | None = None

    @property
    def needs_role_selection(self) -> bool:
        return self.grant is None


def normalize_cpf(cpf: str) -> str:
    clean = re.sub(r"\D", "", cpf or "")
    if len(clean) != 11:
        raise ValidationError("CPF inválido")
    return clean


def parse_role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise ValidationError("Perfil inválido", {"role": str(role)}) from None


def _identity(u: User) -> UserIdentity:
    return UserIdentity(
        id=u.id,
        name=u.name,
        roles=tuple(Role(r) for r in u.roles),
        subscription_status=u.subscription_status.value,
        subscription_expiry=u.subscription_expiry,
    )


def _profile(u: User, current_role: Role) -> dict[str, Any]:
    return {
        "id": u.id,
        "name": u.name,
        "roles": list(u.roles),
        "currentRole": current_role.value,
        "subscription_status": u.subscription_status.value,
        "subscription_expiry": u.subscription_expiry.isoformat() if u.subscription_expiry else None,
    }


def _issue(u: User, role: Role) -> SessionGrant:
    token = create_access_token(subject=str(u.id), current_role=role.value, roles=list(u.roles))
    ctx = SessionContext(
        user_id=u.id,
        name=u.name,
        roles=tuple(Role(r) for r in u.roles),
        current_role=role,
    )
    return SessionGrant(token=token, session=ctx, user=_profile(u, role))


# =========================
# Cadastro
# =========================
def register_user(
    name: str,
    cpf: str,
    password: str,
    email: str | None = None,
    phone: str | None = None,
    roles: list[Role] | None = None,
) -> int:
    if not name or not name.strip() or not password:
        raise ValidationError("Nome, CPF e senha são obrigatórios")
    clean_cpf = normalize_cpf(cpf)
    if len(password) < 6:
        raise ValidationError("Senha deve ter pelo menos 6 caracteres")

    with db_session() as s:
        exists = s.execute(select(User.id).where(User.cpf == clean_cpf)).scalar_one_or_none()
        if exists is not None:
            raise ConflictError("CPF já cadastrado")

        u = User(
            name=name.strip(),
            cpf=clean_cpf,
            email=email.strip() if email else None,
            phone=re.sub(r"\D", "", phone) if phone else None,
            password_hash=hash_password(password),
            roles=[r.value for r in (roles or [Role.CLIENT])],
        )
        s.add(u)
        s.flush()
        audit.record(s, u.id, "register", "users", u.id, new_values={"roles": u.roles})
        logger.info("Usuário registrado: %s", u.id)
        return u.id


def grant_role(user_id: int, role: Role | str) -> list[str]:
    role = parse_role(role)
    with db_session() as s:
        u = s.get(User, user_id)
        if u is None:
            raise NotFoundError("Usuário não encontrado")
        old = list(u.roles)
        if role.value not in old:
            u.roles = old + [role.value]
            audit.record(s, user_id, "grant_role", "users", user_id, {"roles": old}, {"roles": u.roles})
        return list(u.roles)


def revoke_role(user_id: int, role: Role | str) -> list[str]:
    role = parse_role(role)
    with db_session() as s:
        u = s.get(User, user_id)
        if u is None:
            raise NotFoundError("Usuário não encontrado")
        old = list(u.roles)
        if role.value in old:
            if len(old) == 1:
                raise ValidationError("O usuário precisa manter pelo menos um perfil")
            u.roles = [r for r in old if r != role.value]
            audit.record(s, user_id, "revoke_role", "users", user_id, {"roles": old}, {"roles": u.roles})
        return list(u.roles)


# =========================
# Login e perfis
# =========================
def authenticate(cpf: str, password: str) -> UserIdentity:
    if not cpf or not password:
        raise ValidationError("CPF e senha são obrigatórios")
    clean_cpf = normalize_cpf(cpf)

    with db_session() as s:
        u = s.execute(select(User).where(User.cpf == clean_cpf)).scalar_one_or_none()
        if u is None or not verify_password(password, u.password_hash):
            logger.info("Login recusado para CPF final %s", clean_cpf[-3:])
            raise AuthenticationError()
        audit.record(s, u.id, "login", "users", u.id, new_values={"roles": list(u.roles)})
        return _identity(u)


def login(cpf: str, password: str) -> LoginResult:
    """
    Valida as credenciais. Com um único perfil o token já é emitido;
    com mais de um, o chamador deve escolher via select_role usando o
    token de seleção devolvido aqui.
    """
    identity = authenticate(cpf, password)
    if len(identity.roles) == 1:
        return LoginResult(identity=identity, grant=select_role(identity.id, identity.roles[0]))
    return LoginResult(identity=identity, grant=None, selection_token=create_selection_token(str(identity.id)))


def verify_selection_token(token: str, user_id: int) -> None:
    claims = get_claims(token)
    if not claims or claims.get("scope") != SELECTION_SCOPE or claims.get("sub") != str(user_id):
        raise AuthenticationError("Token de seleção de perfil inválido")


def select_role(user_id: int, role: Role | str) -> SessionGrant:
    role = parse_role(role)
    with db_session() as s:
        u = s.get(User, user_id)
        if u is None:
            raise NotFoundError("Usuário não encontrado")
        if u.has_role(role):
            audit.record(s, u.id, "select_role", "users", u.id, new_values={"role": role.value})
            logger.info("Perfil selecionado: user=%s role=%s", u.id, role.value)
            return _issue(u, role)

    _record_denied(user_id, "select_role_denied", role)
    raise AuthorizationError("Perfil não autorizado para este usuário")


def switch_role(session: SessionContext, role: Role | str) -> SessionGrant:
    """Reemite o token com outro perfil ativo, se o usuário ainda o possuir."""
    role = parse_role(role)
    with db_session() as s:
        u = s.get(User, session.user_id)
        if u is None:
            raise NotFoundError("Usuário não encontrado")
        if u.has_role(role):
            audit.record(
                s,
                u.id,
                "switch_role",
                "users",
                u.id,
                old_values={"role": session.current_role.value},
                new_values={"role": role.value},
            )
            logger.info("Perfil alterado: user=%s %s -> %s", u.id, session.current_role.value, role.value)
            return _issue(u, role)

    _record_denied(session.user_id, "switch_role_denied", role, session.current_role)
    raise AuthorizationError("Perfil não autorizado para este usuário")


def _record_denied(user_id: int, action: str, role: Role, current: Role | None = None) -> None:
    with db_session() as s:
        audit.record(
            s,
            user_id,
            action,
            "users",
            user_id,
            old_values={"role": current.value} if current else None,
            new_values={"role": role.value},
        )


def session_from_token(token: str) -> SessionContext:
    claims = get_claims(token)
    if not claims or not claims.get("sub") or not claims.get("currentRole"):
        raise AuthenticationError("Token inválido")

    try:
        user_id = int(claims["sub"])
        role = Role(claims["currentRole"])
    except ValueError:
        raise AuthenticationError("Token inválido") from None

    with db_session() as s:
        u = s.get(User, user_id)
        if u is None:
            raise AuthenticationError("Usuário inválido")
        # o perfil pode ter sido revogado depois da emissão
        if not u.has_role(role):
            raise AuthorizationError("Perfil não autorizado para este usuário")
        return SessionContext(
            user_id=u.id,
            name=u.name,
            roles=tuple(Role(r) for r in u.roles),
            current_role=role,
        )


def get_profile(session: SessionContext) -> dict[str, Any]:
    with db_session() as s:
        u = s.get(User, session.user_id)
        if u is None:
            raise NotFoundError("Usuário não encontrado")
        return _profile(u, session.current_role)
