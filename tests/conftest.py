import os

os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from database import Base, configure_sqlite_connection  # noqa: E402
from models import User  # noqa: E402
from security import hash_password  # noqa: E402


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(eng, "connect", configure_sqlite_connection)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture()
def make_user(session):
    def _make(email: str, name: str = "Test User", password: str = "secret123") -> User:
        user = User(name=name, email=email, password_hash=hash_password(password))
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make
