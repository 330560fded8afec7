from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./iqra.db"

Base = declarative_base()


def make_engine(url: str = DATABASE_URL) -> Engine:
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	return create_engine(url, connect_args=connect_args, future=True)


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def init_db(bind: Engine = engine) -> None:
	# Registers the table models on Base before creating anything missing
	from . import models  # noqa: F401
	Base.metadata.create_all(bind=bind)
