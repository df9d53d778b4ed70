from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from convenio.config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALG, JWT_SECRET

SELECTION_SCOPE = "role_selection"
SELECTION_TOKEN_EXPIRE_MINUTES = 10

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(
    subject: str,
    current_role: str,
    roles: list[str],
    extra: dict[str, Any] | None = None,
) -> str:
    """
    subject: id do usuário.
    O token carrega exatamente um perfil ativo (currentRole) e a lista de
    perfis permitidos no momento da emissão.
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    payload: dict[str, Any] = {
        "sub": subject,
        "currentRole": current_role,
        "roles": list(roles),
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    if extra:
        payload.update(extra)

    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def create_selection_token(subject: str) -> str:
    """
    Token curto emitido no login de usuários com mais de um perfil.
    Não carrega currentRole: só serve para chamar a seleção de perfil.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "scope": SELECTION_SCOPE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=SELECTION_TOKEN_EXPIRE_MINUTES)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])


def get_claims(token: str) -> dict[str, Any] | None:
    try:
        return decode_token(token)
    except JWTError:
        return None
