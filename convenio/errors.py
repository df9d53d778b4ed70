"""
Taxonomia de erros do domínio.

Cada erro carrega um `kind` interno (estável, para logs e testes) e uma
`message` em português para o usuário final. A API converte os erros em
respostas JSON com o status HTTP correspondente.
"""
from __future__ import annotations

from typing import Any


class ConvenioError(Exception):
    kind = "error"
    status_code = 500
    default_message = "Erro interno do servidor"

    def __init__(self, message: str | None = None, detail: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "detail": self.message}
        if self.detail:
            out["context"] = self.detail
        return out


class ValidationError(ConvenioError):
    kind = "validation"
    status_code = 400
    default_message = "Dados inválidos"


class AuthenticationError(ConvenioError):
    kind = "authentication"
    status_code = 401
    default_message = "CPF ou senha incorretos"


class AuthorizationError(ConvenioError):
    kind = "authorization"
    status_code = 403
    default_message = "Acesso negado"


class NotFoundError(ConvenioError):
    kind = "not_found"
    status_code = 404
    default_message = "Registro não encontrado"


class ConflictError(ConvenioError):
    kind = "conflict"
    status_code = 409
    default_message = "Horário já ocupado"


class UpstreamError(ConvenioError):
    """Falha de um serviço externo; a mensagem do serviço é repassada."""

    kind = "upstream"
    status_code = 502
    default_message = "Falha no serviço externo"
