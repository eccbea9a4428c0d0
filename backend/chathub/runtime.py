"""Wiring of the chat components for one application instance.

Every stateful component is owned by a ``ChatRuntime`` built in the app
lifespan and stored on ``app.state.runtime``; nothing lives in module
globals, so tests can build as many isolated runtimes as they like.
"""
import logging
from dataclasses import dataclass

from fastapi import Request

from chathub.auth.service import CredentialStore, DuckDBCredentialStore
from chathub.chat.coordinator import SessionCoordinator
from chathub.chat.gateway import FanoutGateway
from chathub.config import AppSettings
from chathub.messages.store import MessageStore
from chathub.presence.registry import PresenceRegistry
from chathub.rooms.directory import RoomDirectory

logger = logging.getLogger(__name__)


@dataclass
class ChatRuntime:
    config: AppSettings
    store: MessageStore
    credentials: CredentialStore
    presence: PresenceRegistry
    directory: RoomDirectory
    gateway: FanoutGateway
    coordinator: SessionCoordinator

    @classmethod
    def from_config(cls, config: AppSettings) -> "ChatRuntime":
        store = MessageStore(db_path=config.storage.db_path)
        credentials = DuckDBCredentialStore(connection=store.connection, lock=store.lock)
        presence = PresenceRegistry()
        directory = RoomDirectory(
            presence,
            config.rooms.names,
            default_room=config.rooms.default_room,
            allow_dynamic=config.rooms.allow_dynamic,
        )
        gateway = FanoutGateway(presence)
        coordinator = SessionCoordinator(
            store=store,
            credentials=credentials,
            presence=presence,
            directory=directory,
            gateway=gateway,
            history_limit=config.history.limit,
        )
        logger.info("Chat runtime ready: rooms=%s", directory.names())
        return cls(
            config=config,
            store=store,
            credentials=credentials,
            presence=presence,
            directory=directory,
            gateway=gateway,
            coordinator=coordinator,
        )

    def close(self) -> None:
        self.store.close()


def get_runtime(request: Request) -> ChatRuntime:
    """FastAPI dependency returning the runtime of the current app."""
    return request.app.state.runtime
