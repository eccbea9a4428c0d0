"""Shared test fixtures and configuration for backend tests."""
from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient

from chathub.config import AppSettings, HistorySettings, RoomsSettings, StorageSettings
from chathub.main import create_app
from chathub.runtime import ChatRuntime


class RecordingSink:
    """Stand-in for a WebSocket that records every frame it is sent."""

    def __init__(self) -> None:
        self.frames: List[dict] = []
        self.closed = False

    async def send_json(self, data) -> None:
        if self.closed:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    def events(self, name: str = None) -> List[dict]:
        """Payloads received, optionally only those of one event."""
        return [f["data"] for f in self.frames if name is None or f["event"] == name]

    def names(self) -> List[str]:
        return [f["event"] for f in self.frames]

    def clear(self) -> None:
        self.frames.clear()


@pytest.fixture
def settings():
    """In-memory settings: four rooms, closed room set."""
    return AppSettings(
        rooms=RoomsSettings(names=["general", "random", "tech", "gaming"], default_room="general"),
        storage=StorageSettings(db_path=":memory:"),
        history=HistorySettings(limit=50, search_limit=20),
    )


@pytest.fixture
def runtime(settings):
    """A fully wired chat runtime backed by an in-memory database."""
    rt = ChatRuntime.from_config(settings)
    yield rt
    rt.close()


@pytest.fixture
def connect(runtime):
    """Open a fake connection: returns (connection_id, sink)."""
    counter = {"n": 0}

    def _connect(name: str = None) -> Tuple[str, RecordingSink]:
        counter["n"] += 1
        connection_id = name or f"conn-{counter['n']}"
        sink = RecordingSink()
        runtime.gateway.attach(connection_id, sink)
        runtime.coordinator.connect(connection_id)
        return connection_id, sink

    return _connect


@pytest.fixture
def api_client(settings):
    """Provide a TestClient for a fresh app; the lifespan builds the runtime."""
    with TestClient(create_app(settings)) as client:
        yield client
