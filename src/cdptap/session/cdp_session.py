"""
CDPTap Live Session

Minimal Chrome DevTools Protocol client over a WebSocket: sends commands,
matches responses to requests by message id, and dispatches push events to
subscribers. This is the live-session side a replay talks to.
"""

import asyncio
import functools
import inspect
import json
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

import requests
import websockets
from websockets.exceptions import ConnectionClosed

from ..common import safe_json_parse
from ..replay.errors import TransportError


logger = logging.getLogger("cdptap.session")

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 9222


class CDPSession:
    """
    One DevTools connection, optionally scoped to a flattened target session.

    Example:
        session = await CDPSession.connect(get_page_websocket_url())
        result = await session.send('Page.getResourceTree')
        await session.close()
    """

    def __init__(self, websocket: Any, session_id: Optional[str] = None):
        """
        Initialize session over an open WebSocket.

        Args:
            websocket: Connection with async ``send``, ``recv`` and ``close``
            session_id: Target session to address commands to (flat mode)
        """
        self.session_id = session_id
        self._ws = websocket
        self._next_id = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._reader_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Future] = set()
        self._closed_reason: Optional[str] = None

    @classmethod
    async def connect(cls, ws_url: str, session_id: Optional[str] = None) -> 'CDPSession':
        """Open a WebSocket to a DevTools endpoint and start reading from it."""
        try:
            websocket = await websockets.connect(ws_url, max_size=None)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f"Could not connect to {ws_url}: {e}") from e

        logger.info(f"Connected to {ws_url}")
        session = cls(websocket, session_id=session_id)
        session.start()
        return session

    @property
    def closed(self) -> bool:
        return self._closed_reason is not None

    def start(self):
        """Start the background reader task."""
        if self._reader_task is None:
            self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    def on(self, event_name: str, handler: Callable):
        """Subscribe to a push event. Handlers get the event params; they may be async."""
        self._handlers[event_name].append(handler)

    def off(self, event_name: str, handler: Callable):
        if handler in self._handlers.get(event_name, []):
            self._handlers[event_name].remove(handler)

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Send a command and wait for its response.

        No timeout is applied; callers that need one wrap this in
        ``asyncio.wait_for``.

        Returns:
            The response ``result`` object

        Raises:
            TransportError: If the channel is closed or the protocol returns an error
        """
        if self._closed_reason is not None:
            raise TransportError(f"Cannot send {method}: session closed ({self._closed_reason})", method=method)

        self._next_id += 1
        message_id = self._next_id
        message: Dict[str, Any] = {'id': message_id, 'method': method, 'params': params or {}}
        target_session = session_id or self.session_id
        if target_session:
            message['sessionId'] = target_session

        future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future

        try:
            await self._ws.send(json.dumps(message))
        except (ConnectionClosed, OSError) as e:
            self._pending.pop(message_id, None)
            raise TransportError(f"Cannot send {method}: {e}", method=method) from e

        logger.debug(f"-> {message_id} {method}")
        return await future

    async def close(self):
        """Stop reading and close the WebSocket. Pending commands fail."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        for task in list(self._handler_tasks):
            task.cancel()

        self._fail_pending("session closed by caller")
        await self._ws.close()

    async def _read_loop(self):
        reason = "connection closed"
        try:
            while True:
                raw = await self._ws.recv()
                message = safe_json_parse(raw)
                if not isinstance(message, dict):
                    logger.warning(f"Ignoring non-JSON message: {str(raw)[:200]}")
                    continue
                self._dispatch(message)
        except (ConnectionClosed, OSError) as e:
            reason = f"connection closed: {e}"
            logger.warning(f"DevTools {reason}")
        finally:
            self._fail_pending(reason)

    def _dispatch(self, message: Dict[str, Any]):
        if 'id' in message:
            future = self._pending.pop(message['id'], None)
            if future is None or future.done():
                logger.debug(f"Response for unknown id {message['id']}")
                return

            if 'error' in message:
                error = message['error'] or {}
                future.set_exception(TransportError(
                    f"Protocol error {error.get('code')}: {error.get('message')}"
                ))
            else:
                logger.debug(f"<- {message['id']}")
                future.set_result(message.get('result', {}))
            return

        event_name = message.get('method')
        if not event_name:
            return

        # Events from other flattened sessions are not ours
        if self.session_id and message.get('sessionId') not in (None, self.session_id):
            return

        for handler in list(self._handlers.get(event_name, [])):
            try:
                outcome = handler(message.get('params', {}))
            except Exception:
                logger.exception(f"Handler for {event_name} failed")
                continue

            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._handler_tasks.add(task)
                task.add_done_callback(functools.partial(self._handler_done, event_name))

    def _handler_done(self, event_name: str, task: asyncio.Future):
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Handler for {event_name} failed: {error!r}", exc_info=error)

    def _fail_pending(self, reason: str):
        self._closed_reason = reason
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(TransportError(f"Channel closed before response: {reason}"))


def get_browser_websocket_url(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, timeout: int = 5) -> str:
    """Browser-level DevTools WebSocket URL from /json/version."""
    data = _get_json(f"http://{host}:{port}/json/version", timeout)
    try:
        return data['webSocketDebuggerUrl']
    except (KeyError, TypeError) as e:
        raise TransportError(f"No webSocketDebuggerUrl at {host}:{port}") from e


def get_page_websocket_url(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, timeout: int = 5) -> str:
    """WebSocket URL of the first page target from /json/list."""
    targets = _get_json(f"http://{host}:{port}/json/list", timeout)
    for target in targets or []:
        if target.get('type') == 'page' and target.get('webSocketDebuggerUrl'):
            return target['webSocketDebuggerUrl']
    raise TransportError(f"No page target found at {host}:{port}")


def _get_json(url: str, timeout: int) -> Any:
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except requests.RequestException as e:
        raise TransportError(f"DevTools endpoint {url} unavailable: {e}") from e
    except ValueError as e:
        raise TransportError(f"DevTools endpoint {url} returned invalid JSON") from e
