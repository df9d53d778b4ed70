from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# SQLite local por padrão (ao lado do streamlit_app.py); em produção use Postgres
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{PROJECT_ROOT / 'convenio.sqlite'}")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

# Em produção: defina JWT_SECRET no ambiente
JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_DEV_SECRET")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "1440"))

# Fuso civil fixo (Brasília não tem horário de verão desde 2019)
CIVIL_UTC_OFFSET_HOURS = int(os.getenv("CIVIL_UTC_OFFSET_HOURS", "-3"))

# Limite de ocorrências por pedido de consulta recorrente
MAX_OCCURRENCES = int(os.getenv("MAX_OCCURRENCES", "100"))

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Administrador criado pelo seed
ADMIN_CPF = os.getenv("ADMIN_CPF", "00000000000")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
