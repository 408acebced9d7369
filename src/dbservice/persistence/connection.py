"""
Connection Manager - Retry-Until-Success State Machine

🔌 Backend Connection Lifecycle:
Owns the connection state and the entity type → backend model mapping for
one data access service. Backends subclass ConnectionManager and provide the
driver-specific open/register/sync/close steps; the retry loop, state guard
and in-flight operation tracking live here.

States:
    DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTING → DISCONNECTED

CONNECTING loops on failure with a fixed wait between attempts. The mapping
table only exists while CONNECTED.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from enum import Enum
from typing import (
    Any, AsyncIterator, Dict, Generic, Mapping, Optional, Sequence, TypeVar, Union
)

from .errors import (
    ConnectionCancelledError, ConnectionFailedError, ConnectionStateError,
    ModelNotFoundError, NotConnectedError
)
from .interface import SchemaDescriptor

ModelType = TypeVar('ModelType')

DEFAULT_RETRY_INTERVAL = 3.0


class ConnectionState(Enum):
    """Connection lifecycle states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class ConnectionManager(ABC, Generic[ModelType]):
    """
    Base connection manager.

    Subclasses implement:
      _open: create the driver handle and verify the backend answers
      _validate: reject unusable schema definitions up front (optional)
      _register: build the backend model for one schema descriptor
      _sync: materialize storage for the registered models (optional)
      _close: release the driver handle
    """

    backend_name = "database"

    def __init__(self, retry_interval: float = DEFAULT_RETRY_INTERVAL,
                 max_attempts: Optional[int] = None,
                 logger: Optional[logging.Logger] = None):
        self.retry_interval = retry_interval
        self.max_attempts = max_attempts
        self.logger = logger or logging.getLogger(
            f"{self.__class__.__module__}.{self.__class__.__name__}"
        )
        self._state = ConnectionState.DISCONNECTED
        self._mappings: Optional[Dict[str, ModelType]] = None
        self._lock = asyncio.Lock()
        self._abandon = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._active_operations = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._mappings is not None

    @property
    def entity_types(self) -> Sequence[str]:
        return list(self._mappings or {})

    # ── Driver hooks ──────────────────────────────────────────

    @abstractmethod
    async def _open(self, connection: str) -> None:
        """Create the driver handle and check the backend is reachable"""
        ...

    @abstractmethod
    def _register(self, descriptor: SchemaDescriptor) -> ModelType:
        """Build the backend model for one entity type"""
        ...

    def _validate(self, descriptor: SchemaDescriptor) -> None:
        """Reject schema definitions the backend cannot model, before connecting"""
        pass

    async def _sync(self, mappings: Mapping[str, ModelType]) -> None:
        """Materialize storage structures for the registered models"""
        pass

    @abstractmethod
    async def _close(self) -> None:
        """Release the driver handle. May raise."""
        ...

    @abstractmethod
    def _has_handle(self) -> bool:
        """True while a driver handle exists"""
        ...

    # ── Lifecycle ─────────────────────────────────────────────

    async def connect(self, connection: str,
                      schema: Sequence[Union[SchemaDescriptor, Mapping[str, Any]]],
                      logger: Optional[logging.Logger] = None) -> None:
        """
        Connect and build the mapping table, retrying until success.

        Each failed attempt logs one error line and waits ``retry_interval``
        seconds before the next one. With ``max_attempts`` unset the loop only
        ends on success or when disconnect abandons it.
        Schema descriptors are validated first, so an unusable schema raises
        InvalidSchemaError instead of being retried.
        """
        descriptors = [SchemaDescriptor.coerce(entry) for entry in schema]
        for descriptor in descriptors:
            self._validate(descriptor)

        async with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                raise ConnectionStateError(
                    f"Cannot connect to {self.backend_name} while {self._state.value}"
                )
            if logger is not None:
                self.logger = logger
            self._state = ConnectionState.CONNECTING
            self._abandon.clear()

        attempts = 0
        try:
            while True:
                attempts += 1
                self.logger.debug(f"Attempting to connect to {self.backend_name} instance...")
                try:
                    mappings = await self._attempt(connection, descriptors)
                except Exception as e:
                    self.logger.error(f"Failed to connect to {self.backend_name} - {e}")
                    await self._discard()
                    if self.max_attempts and attempts >= self.max_attempts:
                        raise ConnectionFailedError(
                            f"Gave up connecting to {self.backend_name} after {attempts} attempts"
                        ) from e
                    if await self._wait_or_abandon():
                        raise ConnectionCancelledError(
                            f"Connection to {self.backend_name} abandoned by disconnect"
                        )
                    continue

                if self._abandon.is_set():
                    await self._discard()
                    raise ConnectionCancelledError(
                        f"Connection to {self.backend_name} abandoned by disconnect"
                    )
                break
        except BaseException:
            # a cancelled attempt can leave a half-open handle behind
            try:
                await asyncio.shield(self._discard())
            finally:
                self._state = ConnectionState.DISCONNECTED
            raise

        self._mappings = mappings
        self._state = ConnectionState.CONNECTED
        self.logger.info(f"{self.backend_name} database connected")

    async def _attempt(self, connection: str,
                       descriptors: Sequence[SchemaDescriptor]) -> Dict[str, ModelType]:
        if not connection:
            raise ConnectionFailedError("no connection string supplied")
        await self._open(connection)
        self.logger.debug(f"{self.backend_name} connection successful")

        mappings: Dict[str, ModelType] = {}
        for descriptor in descriptors:
            mappings[descriptor.name] = self._register(descriptor)
        await self._sync(mappings)
        return mappings

    async def _wait_or_abandon(self) -> bool:
        """Sleep for the retry interval; True if disconnect abandoned the loop"""
        try:
            await asyncio.wait_for(self._abandon.wait(), timeout=self.retry_interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def _discard(self) -> None:
        """Drop a half-open driver handle after a failed attempt"""
        if not self._has_handle():
            return
        try:
            await self._close()
        except Exception as e:
            self.logger.debug(f"Ignoring error while discarding {self.backend_name} handle - {e}")

    async def disconnect(self) -> None:
        """
        Close the backend connection.

        Never raises: a failing driver close is logged and the manager still
        ends up DISCONNECTED with the mapping table cleared.
        """
        async with self._lock:
            if self._state is ConnectionState.CONNECTING:
                self.logger.debug(f"Abandoning {self.backend_name} connection attempts")
                self._abandon.set()
                return

            if self._state is not ConnectionState.CONNECTED:
                self.logger.error(f"No {self.backend_name} connection available to close")
                return

            self._state = ConnectionState.DISCONNECTING
            try:
                await self._idle.wait()
                await self._close()
                self.logger.debug(f"{self.backend_name} disconnected successfully")
            except Exception as e:
                self.logger.error(f"{self.backend_name} failed to disconnect - {e}")
            finally:
                self._mappings = None
                self._state = ConnectionState.DISCONNECTED

    # ── Operation guard ───────────────────────────────────────

    def get_model(self, entity_type: str) -> ModelType:
        if not self.is_connected:
            raise NotConnectedError(
                "Mappings not set, connect must be called with a schema for this entity"
            )
        try:
            return self._mappings[entity_type]
        except KeyError:
            raise ModelNotFoundError(f"Model doesnt exist - {entity_type}") from None

    @asynccontextmanager
    async def operation(self, entity_type: Optional[str] = None) -> AsyncIterator[Optional[ModelType]]:
        """
        Run a backend operation while connected.

        Yields the model for ``entity_type`` (or None). Disconnect waits for
        every open operation to finish before closing the driver.
        """
        if entity_type is None:
            if not self.is_connected:
                raise NotConnectedError(f"Not connected to {self.backend_name}")
            model = None
        else:
            model = self.get_model(entity_type)

        self._active_operations += 1
        self._idle.clear()
        try:
            yield model
        finally:
            self._active_operations -= 1
            if not self._active_operations:
                self._idle.set()

    def __repr__(self):
        return f"<{self.__class__.__name__} {self._state.value}>"
