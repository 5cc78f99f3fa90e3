import pytest
from sqlalchemy.pool import StaticPool

from finbot.db import Base, build_engine, build_session_factory
from finbot.dialogue import DialogueManager
from finbot.services import FinanceService


@pytest.fixture
def engine():
    engine = build_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    from finbot import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def service(session_factory):
    return FinanceService(session_factory)


@pytest.fixture
def dialogue(service):
    return DialogueManager(service)
