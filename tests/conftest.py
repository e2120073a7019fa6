from __future__ import annotations

import os
import tempfile

# Antes de importar app.*: app.config lee DATABASE_URL al importarse
_DB_DIR = tempfile.mkdtemp(prefix="jurisync-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.pop("ADMIN_API_TOKEN", None)
for _key in list(os.environ):
    if _key.startswith(("ASAAS_", "PROJUDI_")):
        os.environ.pop(_key)

import pytest  # noqa: E402

from app import models  # noqa: E402,F401
from app.db import Base, SessionLocal, engine  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    return SessionLocal
