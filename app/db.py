from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # sqlite solo se usa en tests / dev local
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


# Engine de SQLAlchemy
engine = create_engine(
    settings.DATABASE_URL,
    future=True,
    echo=False,  # pon True si quieres ver el SQL en consola
    **_engine_kwargs(settings.DATABASE_URL),
)

# Factoría de sesiones
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # <- los snapshots de status se leen después del commit
)

# Base para los modelos ORM
Base = declarative_base()

# JSONB en Postgres, JSON genérico en el resto (sqlite en tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# Dependencia para usar en FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
