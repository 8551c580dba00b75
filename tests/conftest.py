import os

os.environ.setdefault("ENV", "test")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from spg_chat import models  # noqa: E402,F401
from spg_chat.core.message_feed import MessageFeed  # noqa: E402
from spg_chat.db import Base  # noqa: E402
from spg_chat.storage.object_storage import InMemoryObjectStorage  # noqa: E402

pytest_plugins = [
    "tests.fixtures.conversation_fixtures",
    "tests.fixtures.message_fixtures",
    "tests.fixtures.client_fixtures",
]


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def feed():
    return MessageFeed()


@pytest.fixture(scope="function")
def storage():
    return InMemoryObjectStorage(public_url="https://cdn.test/chat-media")
