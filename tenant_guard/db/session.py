# tenant_guard/db/session.py
from contextlib import contextmanager
from typing import Iterator
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError

from tenant_guard.core.config import settings
from tenant_guard.core.exceptions import StorageUnavailable
from tenant_guard.db.base import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Crée le moteur SQLAlchemy (options de pool hors SQLite)"""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=echo,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.SQLALCHEMY_ECHO)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine = None) -> None:
    """Crée les tables du moteur (événements, compteurs, tentatives)"""
    # Import des modèles pour les enregistrer dans les métadonnées
    from tenant_guard import models  # noqa: F401

    logger.info("Création des tables de sécurité...")
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(factory: sessionmaker = None, store: str = "database") -> Iterator[Session]:
    """
    Session par opération de store
    - commit auto si succès
    - rollback garanti
    - les erreurs SQLAlchemy deviennent StorageUnavailable
    """
    db: Session = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Erreur SQLAlchemy")
        raise StorageUnavailable("Erreur interne de base de données", store=store) from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
