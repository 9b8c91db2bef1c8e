import pytest
from sqlmodel import SQLModel, Session

from coaching.database import engine, create_db_and_tables


@pytest.fixture(scope="session", autouse=True)
def reset_db():
    """Ensure a fresh database for tests."""
    SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    yield


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s
