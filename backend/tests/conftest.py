"""Shared test fixtures and configuration for backend tests."""
import time

import pytest
from fastapi.testclient import TestClient

from projectchat.chat.hub import ChatHub
from projectchat.config import AppSettings, ChatSettings, StorageSettings
from projectchat.main import create_app
from projectchat.storage import DuckDBMessageStore, ProjectDirectory, UserDirectory, open_database

# Seeded ids
HOMEOWNER = 1      # Alice Homeowner, owns project 42
PROVIDER = 2       # Bob Builder, service provider
NEIGHBOUR = 3      # Carol, owns project 43
PROJECT = 42
OTHER_PROJECT = 43

TYPING_TIMEOUT = 0.3


def make_settings() -> AppSettings:
    return AppSettings(
        chat=ChatSettings(typing_timeout_seconds=TYPING_TIMEOUT),
        storage=StorageSettings(db_path=":memory:"),
    )


def seed(users: UserDirectory, projects: ProjectDirectory) -> None:
    users.add_user(HOMEOWNER, "alice", "Alice", "Homeowner")
    users.add_user(PROVIDER, "bob", "Bob", "Builder", user_type="service_provider")
    users.add_user(NEIGHBOUR, "carol")
    projects.add_project(PROJECT, HOMEOWNER, "Kitchen remodel")
    projects.add_project(OTHER_PROJECT, NEIGHBOUR, "Deck repair")


def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* from the test thread until it holds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


@pytest.fixture
def app():
    return create_app(make_settings())


@pytest.fixture
def api_client(app):
    """A started TestClient: the lifespan has run and the directories are seeded.

    All websockets opened from it share one event loop, so rooms span them.
    """
    with TestClient(app) as client:
        hub = app.state.chat_hub
        seed(hub.users, hub.projects)
        yield client


@pytest.fixture
def db():
    conn = open_database(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def hub(db):
    """A ChatHub over an in-memory database, for tests that skip the socket layer."""
    users = UserDirectory(db)
    projects = ProjectDirectory(db)
    seed(users, projects)
    return ChatHub(
        DuckDBMessageStore(db),
        users,
        projects,
        ChatSettings(typing_timeout_seconds=TYPING_TIMEOUT),
    )


class RecordingOutbox:
    """Stands in for an Outbox: remembers every frame put on it."""

    def __init__(self):
        self.frames = []

    def put(self, frame: dict) -> bool:
        self.frames.append(frame)
        return True

    def of_type(self, frame_type: str) -> list:
        return [frame for frame in self.frames if frame["type"] == frame_type]
