from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from convenio.config import DATABASE_ECHO, DATABASE_URL

# SQLite: a API atende requisições em threads do pool
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    echo=DATABASE_ECHO,
    connect_args=_connect_args,
    pool_pre_ping=True,
    future=True,
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False
)


class Base(DeclarativeBase):
    """Base ORM para todos os modelos."""
    pass


@contextmanager
def db_session() -> Iterator[Session]:
    """
    Context manager da sessão:
    - commit se tudo ok
    - rollback em exceções
    - close sempre
    """
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Cria as tabelas se não existirem."""
    from convenio import models  # noqa: F401  registra os modelos no metadata

    Base.metadata.create_all(bind=engine)
