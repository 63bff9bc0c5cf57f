"""
CDPTap Lifecycle Hooks

Caller-supplied callbacks run around each replayed step. The engine awaits
every hook before advancing, so hooks are synchronization points: they may
delay, probe the session, or log, but never touch engine state.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .errors import HookError
from .log_model import RequestResponsePair


logger = logging.getLogger("cdptap.replay.hooks")


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ReplayHooks:
    """
    Capability interface for step instrumentation.

    Subclass and override either method; the defaults do nothing.
    """

    async def before_each(self, pair: RequestResponsePair) -> None:
        """Called after parameters are rewritten, before the request is sent."""

    async def after_each(self, pair: RequestResponsePair, response: Mapping[str, Any]) -> None:
        """Called after the live response arrived and substitutions were recorded."""


class CallbackHooks(ReplayHooks):
    """Adapts plain callables (sync or async) to the hooks interface."""

    def __init__(
        self,
        before_each: Optional[Callable[[RequestResponsePair], Any]] = None,
        after_each: Optional[Callable[[RequestResponsePair, Mapping[str, Any]], Any]] = None
    ):
        self._before_each = before_each
        self._after_each = after_each

    async def before_each(self, pair: RequestResponsePair) -> None:
        if self._before_each is not None:
            await _maybe_await(self._before_each(pair))

    async def after_each(self, pair: RequestResponsePair, response: Mapping[str, Any]) -> None:
        if self._after_each is not None:
            await _maybe_await(self._after_each(pair, response))


class CompositeHooks(ReplayHooks):
    """Runs several hooks in order; the first exception stops the chain."""

    def __init__(self, hooks: Iterable[ReplayHooks]):
        self.hooks: List[ReplayHooks] = list(hooks)

    async def before_each(self, pair: RequestResponsePair) -> None:
        for hook in self.hooks:
            await hook.before_each(pair)

    async def after_each(self, pair: RequestResponsePair, response: Mapping[str, Any]) -> None:
        for hook in self.hooks:
            await hook.after_each(pair, response)


class LoggingHook(ReplayHooks):
    """Logs each command as it goes out and every non-empty response."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    async def before_each(self, pair: RequestResponsePair) -> None:
        self.log.info(f"{pair.id} {pair.method}")

    async def after_each(self, pair: RequestResponsePair, response: Mapping[str, Any]) -> None:
        if response:
            self.log.info(f"{pair.id} {pair.method} -> {dict(response)}")


class DelayHook(ReplayHooks):
    """
    Introduces artificial delays.

    Args:
        before_methods: Method name -> milliseconds to wait before sending it
        after_each_ms: Milliseconds to wait after every step
    """

    def __init__(self, before_methods: Optional[Dict[str, int]] = None, after_each_ms: int = 0):
        self.before_methods = dict(before_methods or {})
        self.after_each_ms = after_each_ms

    async def before_each(self, pair: RequestResponsePair) -> None:
        delay_ms = self.before_methods.get(pair.method)
        if delay_ms:
            logger.info(f"Waiting {delay_ms}ms before {pair.method}")
            await asyncio.sleep(delay_ms / 1000)

    async def after_each(self, pair: RequestResponsePair, response: Mapping[str, Any]) -> None:
        if self.after_each_ms:
            await asyncio.sleep(self.after_each_ms / 1000)


class ProbeHook(ReplayHooks):
    """
    Sends a diagnostic command over the live session after every step.

    Used to pinpoint the exact step after which the system under test starts
    misbehaving (e.g. probing Page.getInstallabilityErrors until it hangs).
    Probe responses are collected in ``responses`` as (correlation id, result).
    """

    def __init__(self, session: Any, method: str, params: Optional[Dict[str, Any]] = None):
        self.session = session
        self.method = method
        self.params = dict(params or {})
        self.responses: List[tuple] = []

    async def after_each(self, pair: RequestResponsePair, response: Mapping[str, Any]) -> None:
        try:
            result = await self.session.send(self.method, dict(self.params))
        except Exception as e:
            raise HookError(f"Probe {self.method} failed after {pair.id} {pair.method}: {e}") from e

        logger.info(f"probe {self.method} after {pair.id}: {result}")
        self.responses.append((pair.id, result))
