"""
Shared-state adapters.

An adapter is the transport between one SharedStateManager and the hub:
it joins the document's channel, delivers server pushes to subscribers and
answers resync requests.

WebSocketSharedStateAdapter talks to the hub's /ws/shared-state/{state_id}
endpoint. OfflineSharedStateAdapter has no transport at all.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from engine.kernel.types import new_id
from engine.sync.config import settings
from engine.sync.messages import ResyncPayload, ServerUpdate

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[ServerUpdate], None]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ChannelJoinError(Exception):
    """The channel could not be joined within the retry budget."""

    pass


class ResyncError(Exception):
    """The hub did not answer a resync request with a document."""

    pass


# ---------------------------------------------------------------------------
# Adapter protocol
# ---------------------------------------------------------------------------


class SharedStateAdapter:
    """
    Abstract adapter interface.
    Implement with a real channel for production, or in-process for tests.
    """

    def __init__(self, state_id: str) -> None:
        self.state_id = state_id
        self._callbacks: list[UpdateCallback] = []

    async def init(self) -> None:
        """Prepare the transport. Does not connect."""
        raise NotImplementedError

    async def ensure_connected(self) -> None:
        """Join the channel unless already joined or joining."""
        raise NotImplementedError

    async def resync(self, last_known_version: int) -> ResyncPayload:
        """Ask the hub for the authoritative document."""
        raise NotImplementedError

    def destroy(self) -> None:
        """Release the transport. Must not block."""
        raise NotImplementedError

    def subscribe(self, callback: UpdateCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _emit(self, update: ServerUpdate) -> None:
        for callback in list(self._callbacks):
            try:
                callback(update)
            except Exception:
                logger.exception("Update callback failed for %s", self.state_id)


class OfflineSharedStateAdapter(SharedStateAdapter):
    """No transport. State only changes through local optimistic updates."""

    async def init(self) -> None:
        pass

    async def ensure_connected(self) -> None:
        raise ChannelJoinError(f"{self.state_id}: offline adapter has no channel")

    async def resync(self, last_known_version: int) -> ResyncPayload:
        raise ResyncError(f"{self.state_id}: offline adapter cannot resync")

    def destroy(self) -> None:
        self._callbacks.clear()


# ---------------------------------------------------------------------------
# WebSocket adapter
# ---------------------------------------------------------------------------


class WebSocketSharedStateAdapter(SharedStateAdapter):
    """
    Channel over a WebSocket to the hub.

    Joins retry with exponential backoff, min(base * 2**attempt, max_delay),
    and give up after max_attempts with ChannelJoinError. Requests wait at
    most push_timeout seconds for their reply.
    """

    def __init__(
        self,
        state_id: str,
        ws_url: str | None = None,
        token: str | None = None,
        *,
        connect: Callable[..., Awaitable[Any]] | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        max_attempts: int | None = None,
        push_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(state_id)
        self.url = f"{(ws_url or settings.HUB_WS_URL).rstrip('/')}/ws/shared-state/{state_id}"
        self._token = token if token is not None else settings.HUB_TOKEN
        self._connect = connect or websockets.connect
        self._base_delay = base_delay if base_delay is not None else settings.CHANNEL_JOIN_BASE_DELAY_SECONDS
        self._max_delay = max_delay if max_delay is not None else settings.CHANNEL_JOIN_MAX_DELAY_SECONDS
        self._max_attempts = max_attempts if max_attempts is not None else settings.CHANNEL_JOIN_MAX_ATTEMPTS
        self._push_timeout = push_timeout if push_timeout is not None else settings.CHANNEL_PUSH_TIMEOUT_SECONDS
        self._sleep = sleep

        self._ws: Any = None
        self._joining: asyncio.Future | None = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._background: set[asyncio.Task] = set()
        self._destroyed = False

    @property
    def joined(self) -> bool:
        return self._ws is not None

    async def init(self) -> None:
        pass

    async def ensure_connected(self) -> None:
        if self._destroyed:
            raise ChannelJoinError(f"{self.state_id}: adapter destroyed")
        if self._ws is not None:
            return
        if self._joining is None or self._joining.done():
            self._joining = asyncio.ensure_future(self._join())
        await asyncio.shield(self._joining)

    async def resync(self, last_known_version: int) -> ResyncPayload:
        await self.ensure_connected()
        reply = await self._request({"type": "resync", "last_known_version": last_known_version})
        return ResyncPayload.model_validate(reply)

    def destroy(self) -> None:
        self._destroyed = True
        self._callbacks.clear()
        if self._joining is not None and not self._joining.done():
            self._joining.cancel()
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self._fail_pending(ResyncError(f"{self.state_id}: adapter destroyed"))
        ws, self._ws = self._ws, None
        if ws is not None:
            task = asyncio.ensure_future(ws.close())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        return min(self._base_delay * (2**attempt), self._max_delay)

    async def _join(self) -> None:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        attempt = 0
        while True:
            try:
                ws = await self._connect(self.url, additional_headers=headers, open_timeout=self._push_timeout)
                frame = json.loads(await asyncio.wait_for(ws.recv(), timeout=self._push_timeout))
                if frame.get("type") != "joined":
                    await ws.close()
                    raise ChannelJoinError(f"{self.state_id}: unexpected first frame {frame.get('type')!r}")
            except (OSError, TimeoutError, WebSocketException, ChannelJoinError, ValueError) as e:
                if attempt + 1 >= self._max_attempts:
                    raise ChannelJoinError(
                        f"{self.state_id}: giving up after {attempt + 1} join attempts"
                    ) from e
                delay = self._backoff(attempt)
                logger.warning(
                    "Join attempt %d for %s failed (%s); retrying in %.1fs",
                    attempt + 1,
                    self.state_id,
                    e,
                    delay,
                )
                attempt += 1
                await self._sleep(delay)
                continue

            self._ws = ws
            self._reader = asyncio.ensure_future(self._read_loop(ws))
            logger.info("Joined shared-state channel %s at version %s", self.state_id, frame.get("version"))
            return

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            logger.info("Channel %s closed: %s", self.state_id, e)
        finally:
            if self._ws is ws:
                self._ws = None
            self._fail_pending(ResyncError(f"{self.state_id}: channel closed"))

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("Dropping malformed frame on %s", self.state_id)
            return

        frame_type = frame.get("type")
        if frame_type == "update":
            self._emit(ServerUpdate.model_validate(frame.get("payload") or {}))
        elif frame_type == "reply":
            future = self._pending.pop(frame.get("ref"), None)
            if future is None or future.done():
                return
            if frame.get("status") == "ok":
                future.set_result(frame.get("payload") or {})
            else:
                future.set_exception(ResyncError(frame.get("error") or "request failed"))
        else:
            logger.debug("Ignoring %r frame on %s", frame_type, self.state_id)

    async def _request(self, body: dict[str, Any]) -> dict[str, Any]:
        if self._ws is None:
            raise ResyncError(f"{self.state_id}: not joined")
        ref = new_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        try:
            await self._ws.send(json.dumps({**body, "ref": ref}))
            return await asyncio.wait_for(future, timeout=self._push_timeout)
        except TimeoutError as e:
            raise ResyncError(f"{self.state_id}: request timed out") from e
        finally:
            self._pending.pop(ref, None)

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
