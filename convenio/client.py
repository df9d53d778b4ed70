"""
Cliente HTTP da API do convênio.

A URL base é sempre injetada pelo chamador (UI, scripts); o módulo não lê
configuração global além do valor padrão do timeout.
"""
from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timezone
from typing import Any

import requests

from convenio.config import HTTP_TIMEOUT_SECONDS
from convenio.errors import AuthenticationError, AuthorizationError, UpstreamError

logger = logging.getLogger(__name__)


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def jwt_payload(token: str) -> dict:
    """Lê o payload do JWT sem verificar assinatura (uso apenas na UI)."""
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def jwt_is_expired(token: str) -> bool:
    exp = jwt_payload(token).get("exp")
    if exp is None:
        return False
    now = int(datetime.now(tz=timezone.utc).timestamp())
    return now >= (int(exp) - 5)


class ApiClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.http = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _handle(self, r: requests.Response) -> Any:
        if r.ok:
            return r.json() if r.content else None

        try:
            body = r.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = str(body.get("detail") or body.get("message") or r.text or f"HTTP {r.status_code}")

        if r.status_code == 401:
            raise AuthenticationError(message)
        if r.status_code == 403:
            raise AuthorizationError(message)
        logger.error("Erro da API %s %s: %s", r.request.method if r.request else "", r.url, message)
        raise UpstreamError(message, {"status_code": r.status_code, "kind": body.get("kind")})

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            r = self.http.request(
                method, f"{self.base_url}{path}", headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error("API não alcançável (%s): %s", self.base_url, e)
            raise UpstreamError(f"API não alcançável: {e}") from e
        return self._handle(r)

    def get(self, path: str, params: dict | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, payload: dict | None = None) -> Any:
        return self.request("POST", path, json=payload or {})

    def put(self, path: str, payload: dict | None = None) -> Any:
        return self.request("PUT", path, json=payload or {})

    # fluxos de sessão

    def login(self, cpf: str, password: str) -> dict:
        data = self.post("/api/auth/login", {"cpf": cpf, "password": password})
        if data.get("token"):
            self.token = data["token"]
        return data

    def select_role(self, user_id: int, role: str) -> dict:
        data = self.post("/api/auth/select-role", {"user_id": user_id, "role": role})
        self.token = data["token"]
        return data

    def switch_role(self, role: str) -> dict:
        data = self.post("/api/auth/switch-role", {"role": role})
        self.token = data["token"]
        return data
