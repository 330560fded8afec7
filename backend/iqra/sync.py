from __future__ import annotations
import asyncio
import enum
import json
import logging
from typing import Any, Callable, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from .content import SchoolContent
from .errors import ConfigError, DuplicateSessionError, SyncErrorCategory
from .gateway import PersistenceGateway
from .history import HistoryRecorder
from .local_store import CLOUD_CONFIG_KEY
from .mirror_client import ChangeListener, RealtimeMirror, Subscription, classify_error, ordered_values
from .schemas import CloudConfig
from .settings import settings

logger = logging.getLogger(__name__)

COLLECTIONS = ("news", "settings", "history")
PLACEHOLDER_TOKEN = "..."

RawConfig = Union[CloudConfig, Mapping[str, Any], str]


class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class CloudConnectionState(BaseModel):
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    connected: bool = False
    last_error: str = ""
    error_category: Optional[SyncErrorCategory] = None


def parse_config(raw: RawConfig) -> CloudConfig:
    if isinstance(raw, CloudConfig):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ConfigError("Configuration is not valid JSON") from exc
    if not isinstance(raw, Mapping):
        raise ConfigError("Configuration must be a JSON object")
    try:
        return CloudConfig.model_validate(dict(raw))
    except ValidationError as exc:
        raise ConfigError("Configuration fields must be strings") from exc


def validate_config(config: CloudConfig) -> None:
    if not config.api_key.strip() or not config.database_url.strip():
        raise ConfigError("Configuration is missing the access key or database URL")
    for name, value in config.model_dump().items():
        if isinstance(value, str) and PLACEHOLDER_TOKEN in value:
            raise ConfigError(f"Replace the placeholder '{PLACEHOLDER_TOKEN}' in {name} with the real value")


class SyncCoordinator:
    """
    Owns the mirror connection lifecycle.

    At most one mirror connection exists at a time. Every connect bumps a
    generation counter; listeners from older generations are ignored, so a
    late event from a torn-down stream cannot touch local state.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        content: SchoolContent,
        history: HistoryRecorder,
        *,
        mirror_factory: Optional[Callable[[CloudConfig], RealtimeMirror]] = None,
    ) -> None:
        self._gateway = gateway
        self._content = content
        self._history = history
        self._mirror_factory = mirror_factory or (
            lambda config: RealtimeMirror(config, timeout=settings.mirror_timeout_seconds)
        )
        self._mirror: Optional[RealtimeMirror] = None
        self._subscriptions: List[Subscription] = []
        self._generation = 0
        self._lock = asyncio.Lock()
        self._state = CloudConnectionState()

    @property
    def state(self) -> CloudConnectionState:
        return self._state.model_copy()

    @property
    def connected(self) -> bool:
        return self._state.connected

    async def connect(self, raw_config: RawConfig) -> bool:
        try:
            config = parse_config(raw_config)
            validate_config(config)
        except ConfigError as exc:
            logger.warning("Rejected mirror configuration: %s", exc)
            # The remote store is never contacted; any live connection is dropped
            async with self._lock:
                self._generation += 1
                await self._release()
                self._state = CloudConnectionState(last_error=str(exc))
            return False

        self._gateway.local.set(CLOUD_CONFIG_KEY, config.model_dump_json(by_alias=True))
        async with self._lock:
            self._state = CloudConnectionState(status=ConnectionStatus.CONNECTING)
            await self._release()
            self._generation += 1
            generation = self._generation
            try:
                if self._mirror is not None:
                    raise DuplicateSessionError("The previous mirror session could not be released")
                mirror = self._mirror_factory(config)
                try:
                    await mirror.open()
                except BaseException:
                    await self._discard(mirror)
                    raise
            except Exception as exc:
                error = classify_error(exc)
                logger.error("Mirror connection failed (%s): %s", error.category.value, error.message)
                self._state = CloudConnectionState(last_error=error.message, error_category=error.category)
                return False

            self._mirror = mirror
            self._gateway.attach_mirror(mirror)
            for collection in COLLECTIONS:
                self._subscriptions.append(mirror.subscribe(collection, self._listener(collection, generation)))
            self._state = CloudConnectionState(status=ConnectionStatus.CONNECTED, connected=True)
            logger.info("Mirror connected; subscribed to %s", ", ".join(COLLECTIONS))
            self._initial_push()
            return True

    async def disconnect(self) -> None:
        async with self._lock:
            self._gateway.local.remove(CLOUD_CONFIG_KEY)
            self._generation += 1
            await self._release()
            self._state = CloudConnectionState()
        logger.info("Mirror disconnected; running local-only")

    async def resume(self) -> bool:
        """Reconnect with the stored configuration, if any."""
        stored = self._gateway.load(CLOUD_CONFIG_KEY)
        if stored is None:
            return False
        return await self.connect(stored)

    async def close(self) -> None:
        async with self._lock:
            self._generation += 1
            await self._release()
            self._state = CloudConnectionState()

    def _listener(self, collection: str, generation: int) -> ChangeListener:
        async def on_change(snapshot: Any) -> None:
            if generation != self._generation:
                logger.debug("Ignoring %s change from a released connection", collection)
                return
            if not snapshot:
                return
            async with self._gateway.lock:
                if generation != self._generation:
                    return
                self._reconcile(collection, snapshot)
        return on_change

    def _reconcile(self, collection: str, snapshot: Any) -> None:
        if collection == "news":
            self._content.replace_news_from_remote(snapshot)
        elif collection == "settings":
            self._content.replace_settings_from_remote(snapshot)
        elif collection == "history":
            entries = ordered_values(snapshot) if isinstance(snapshot, dict) else snapshot
            if isinstance(entries, list):
                self._history.replace_from_remote(entries)
        logger.debug("Applied remote %s snapshot", collection)

    def _initial_push(self) -> None:
        self._content.push()
        if self._history.history:
            self._history.push()

    async def _release(self) -> None:
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            await sub.unsubscribe()
        self._gateway.detach_mirror()
        old = self._mirror
        if old is None:
            return
        try:
            await old.aclose()
        except Exception as exc:
            logger.warning("Failed to release previous mirror connection: %s", exc)
        if old.closed:
            self._mirror = None

    @staticmethod
    async def _discard(mirror: RealtimeMirror) -> None:
        try:
            await mirror.aclose()
        except Exception as exc:
            logger.debug("Ignoring error while discarding mirror: %s", exc)
