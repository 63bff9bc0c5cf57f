"""
CDPTap Replay Engine

Re-issues recorded protocol requests, in order, against a new live session,
threading server-issued identifiers from earlier responses into later
requests.
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import List, Dict, Any, Optional, Mapping, Callable, Iterable, Tuple
from dataclasses import dataclass, field

from .errors import TransportError
from .filters import PairPredicate, apply_filter
from .hooks import ReplayHooks, CallbackHooks, CompositeHooks
from .log_model import RequestResponsePair, LogSource, load_pairs
from .substitution import SubstitutionTable


logger = logging.getLogger("cdptap.replay")

# Push events surfaced for diagnostics only; never used for correlation
DEFAULT_WATCH_EVENTS = ('ServiceWorker.workerRegistrationUpdated',)


class ReplayState(Enum):
    """Engine traversal states."""

    PENDING = 'pending'
    SENDING = 'sending'
    AWAITING_RESPONSE = 'awaiting_response'
    RECORDED = 'recorded'
    DONE = 'done'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class ReplayStatus(Enum):
    """Outcome of a replay run."""

    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


@dataclass
class StepRecord:
    """What happened to a single replayed pair."""

    index: int
    correlation_id: int
    method: str
    sent_params: Dict[str, Any] = field(default_factory=dict)
    response: Optional[Dict[str, Any]] = None
    state: ReplayState = ReplayState.PENDING
    duration_ms: float = 0.0
    recorded_substitution: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'index': self.index,
            'correlation_id': self.correlation_id,
            'method': self.method,
            'sent_params': self.sent_params,
            'response': self.response,
            'state': self.state.value,
            'duration_ms': round(self.duration_ms, 2),
            'recorded_substitution': self.recorded_substitution,
            'timestamp': self.timestamp,
            'error': self.error,
        }


@dataclass
class ReplayResult:
    """Results from a replay run."""

    status: ReplayStatus
    total_scheduled: int
    replayed: int
    total_duration_sec: float
    steps: List[StepRecord] = field(default_factory=list)
    target_ids: Mapping[Any, Any] = field(default_factory=dict)
    session_ids: Mapping[Any, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status is ReplayStatus.COMPLETED

    @property
    def remaining(self) -> int:
        """Scheduled pairs that were never sent."""
        return self.total_scheduled - self.replayed

    @property
    def avg_duration_ms(self) -> float:
        """Average round trip of sent requests."""
        if not self.steps:
            return 0.0
        return sum(s.duration_ms for s in self.steps) / len(self.steps)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'status': self.status.value,
            'total_scheduled': self.total_scheduled,
            'replayed': self.replayed,
            'remaining': self.remaining,
            'total_duration_sec': round(self.total_duration_sec, 2),
            'avg_duration_ms': round(self.avg_duration_ms, 2),
            'target_ids': {str(k): v for k, v in self.target_ids.items()},
            'session_ids': {str(k): v for k, v in self.session_ids.items()},
            'error': self.error,
            'steps': [s.to_dict() for s in self.steps],
        }


class ReplayEngine:
    """
    Sequential replayer for a recorded request/response log.

    Exactly one request is in flight at a time: later requests may reference
    identifiers only learned from earlier responses. The engine never retries,
    never imposes a timeout and never closes the session it is given; a hang
    in the live session surfaces as a replay that does not return.

    Example:
        engine = ReplayEngine.from_log(
            'logs/lh-log-cli.json',
            filter_commands=CommandFilter(skip_prefixes=['Debugger.']),
        )
        result = await engine.replay(session)
        print(engine.target_ids)
    """

    def __init__(
        self,
        pairs: Iterable[RequestResponsePair],
        filter_commands: Optional[PairPredicate] = None,
        before_each: Optional[Callable] = None,
        after_each: Optional[Callable] = None,
        hooks: Optional[ReplayHooks] = None,
        strict: bool = False,
        watch_events: Iterable[str] = DEFAULT_WATCH_EVENTS
    ):
        """
        Initialize Replay Engine.

        Args:
            pairs: Recorded pairs in log order
            filter_commands: Predicate deciding which pairs are replayed
                             (default: all)
            before_each: Callable run with the pair before each send
            after_each: Callable run with the pair and live response after
                        each step
            hooks: ReplayHooks instance; runs after the callables
            strict: Fail on identifiers with no substitution instead of
                    sending the recorded value
            watch_events: Push events to log while replaying
        """
        self.commands_sent: List[RequestResponsePair] = apply_filter(pairs, filter_commands)
        self.strict = strict
        self.watch_events = list(watch_events)

        chain: List[ReplayHooks] = []
        if before_each is not None or after_each is not None:
            chain.append(CallbackHooks(before_each, after_each))
        if hooks is not None:
            chain.append(hooks)
        self.hooks: ReplayHooks = CompositeHooks(chain)

        self.state = ReplayState.PENDING
        self.table = SubstitutionTable(strict=strict)
        self.result: Optional[ReplayResult] = None
        self._cancel_requested = False

    @classmethod
    def from_log(cls, source: LogSource, **options) -> 'ReplayEngine':
        """Load, validate and pair a log, then build an engine over it."""
        return cls(load_pairs(source), **options)

    @property
    def target_ids(self) -> Mapping[Any, Any]:
        """Recorded -> live target ids learned by the last replay."""
        return self.table.target_ids

    @property
    def session_ids(self) -> Mapping[Any, Any]:
        """Recorded -> live sub-session ids learned by the last replay."""
        return self.table.session_ids

    def cancel(self):
        """Stop before the next pending pair is sent. Already-sent requests stay sent."""
        self._cancel_requested = True

    def _should_stop(self, cancel_event: Optional[asyncio.Event]) -> bool:
        return self._cancel_requested or (cancel_event is not None and cancel_event.is_set())

    def _subscribe_watch_events(self, session: Any) -> List[Tuple[str, Callable]]:
        on = getattr(session, 'on', None)
        if on is None:
            return []

        subscribed = []
        for event_name in self.watch_events:
            def handler(*payload, _event=event_name):
                logger.info(f"event {_event}: {payload[0] if len(payload) == 1 else payload}")
            on(event_name, handler)
            subscribed.append((event_name, handler))
        return subscribed

    def _unsubscribe_watch_events(self, session: Any, subscribed: List[Tuple[str, Callable]]):
        off = getattr(session, 'off', None)
        if off is None:
            return
        for event_name, handler in subscribed:
            off(event_name, handler)

    async def replay(self, session: Any, cancel_event: Optional[asyncio.Event] = None) -> ReplayResult:
        """
        Replay every scheduled pair against the live session.

        Args:
            session: Live session exposing ``async send(method, params)`` and,
                     optionally, ``on(event_name, handler)``
            cancel_event: Optional event; once set, no further pair is sent

        Returns:
            ReplayResult (status COMPLETED or CANCELLED)

        Raises:
            TransportError: The session failed to answer a request
            UnresolvedIdentifierError: Strict mode hit an unmapped identifier
            Exception: Anything a hook raised, unchanged
        """
        self.table = SubstitutionTable(strict=self.strict)
        self.state = ReplayState.PENDING
        self._cancel_requested = False
        self.result = None

        steps: List[StepRecord] = []
        start_time = time.time()
        total = len(self.commands_sent)

        logger.info(f"Replaying {total} commands")
        subscribed = self._subscribe_watch_events(session)

        try:
            for index, pair in enumerate(self.commands_sent):
                if self._should_stop(cancel_event):
                    self.state = ReplayState.CANCELLED
                    logger.warning(f"Replay cancelled before {pair.id} {pair.method} ({index}/{total} sent)")
                    return self._finish(ReplayStatus.CANCELLED, steps, start_time)

                self.state = ReplayState.PENDING
                step = StepRecord(index=index, correlation_id=pair.id, method=pair.method)
                steps.append(step)

                step.sent_params = self.table.rewrite(pair.params)

                await self.hooks.before_each(pair)

                response = await self._send(session, pair, index, step)

                self.state = ReplayState.RECORDED
                step.state = ReplayState.RECORDED
                if pair.has_response:
                    step.recorded_substitution = self.table.record(
                        pair.method, pair.recorded_result, response
                    )

                await self.hooks.after_each(pair, response)

        except asyncio.CancelledError:
            self.state = ReplayState.CANCELLED
            self._finish(ReplayStatus.CANCELLED, steps, start_time)
            raise
        except Exception as e:
            self.state = ReplayState.FAILED
            if steps and steps[-1].error is None:
                steps[-1].error = str(e)
                steps[-1].state = ReplayState.FAILED
            self._finish(ReplayStatus.FAILED, steps, start_time, error=str(e))
            raise
        finally:
            self._unsubscribe_watch_events(session, subscribed)

        self.state = ReplayState.DONE
        logger.info(f"Done replaying {total} commands")
        return self._finish(ReplayStatus.COMPLETED, steps, start_time)

    async def _send(
        self,
        session: Any,
        pair: RequestResponsePair,
        index: int,
        step: StepRecord
    ) -> Dict[str, Any]:
        """Send one request and wait for its response; no retry, no timeout."""
        self.state = ReplayState.SENDING
        step.state = ReplayState.SENDING
        sent_at = time.time()

        try:
            pending = session.send(pair.method, step.sent_params)
            self.state = ReplayState.AWAITING_RESPONSE
            step.state = ReplayState.AWAITING_RESPONSE
            response = await pending
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise self._transport_failure(step, index, pair, e) from e
        finally:
            step.duration_ms = (time.time() - sent_at) * 1000

        step.response = dict(response or {})
        return step.response

    def _transport_failure(
        self,
        step: StepRecord,
        index: int,
        pair: RequestResponsePair,
        cause: Exception
    ) -> TransportError:
        step.state = ReplayState.FAILED
        step.error = str(cause)
        logger.error(f"Transport failure at step {index} ({pair.id} {pair.method}): {cause}")
        return TransportError(
            f"{pair.method} (id {pair.id}, step {index}) failed: {cause}",
            index=index,
            method=pair.method,
            correlation_id=pair.id,
        )

    def _finish(
        self,
        status: ReplayStatus,
        steps: List[StepRecord],
        start_time: float,
        error: Optional[str] = None
    ) -> ReplayResult:
        replayed = sum(1 for s in steps if s.response is not None)
        self.result = ReplayResult(
            status=status,
            total_scheduled=len(self.commands_sent),
            replayed=replayed,
            total_duration_sec=time.time() - start_time,
            steps=steps,
            target_ids=MappingProxyType(dict(self.table.target_ids)),
            session_ids=MappingProxyType(dict(self.table.session_ids)),
            error=error,
        )
        return self.result

    def save_result(self, result: ReplayResult, output_file: str):
        """
        Save replay results to JSON file.

        Args:
            result: ReplayResult to save
            output_file: Path to output JSON file
        """
        with open(output_file, 'w') as f:
            json.dump(result.to_dict(), f, indent=2, default=str)

        logger.info(f"Saved replay results to {output_file}")
