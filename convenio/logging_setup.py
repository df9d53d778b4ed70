from __future__ import annotations

import logging

from convenio.config import LOG_LEVEL


def configure_logging(level: str | None = None) -> None:
    """Configura o logging raiz uma única vez (API e CLI)."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # bibliotecas muito verbosas
    logging.getLogger("passlib").setLevel(logging.ERROR)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
