"""Shared fixtures: in-memory database, store, identity and a mocked Anthropic client."""

from unittest.mock import MagicMock

import pytest

from ai_client import GenerativeClient
from board import PipelineBoard
from database import Base, make_engine, make_session_factory
from identity import IdentityProvider
from store import AccountStore
from tests.helpers import text_reply


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return AccountStore(session_factory)


@pytest.fixture
def identity(session_factory):
    return IdentityProvider(session_factory, "test-secret")


@pytest.fixture
def user(identity):
    return identity.create_user("rep@example.com", "secret123")


@pytest.fixture
def collection(store, user):
    return store.collection(user.id)


@pytest.fixture
def board(collection):
    board = PipelineBoard(collection)
    board.open()
    yield board
    board.close()


@pytest.fixture
def anthropic_mock():
    client = MagicMock()
    client.messages.create.return_value = text_reply("72")
    return client


@pytest.fixture
def ai(anthropic_mock):
    return GenerativeClient(api_key="test-key", client=anthropic_mock)


@pytest.fixture
def disabled_ai():
    return GenerativeClient(api_key=None)


