"""
CDPTap Log Model

Represents a recorded protocol session as an ordered sequence of
request/response pairs matched by correlation id.
"""

from pathlib import Path
from types import MappingProxyType
from typing import List, Dict, Any, Optional, Iterable, Mapping, Union
from dataclasses import dataclass

from ..common import LogLoader, unwrap_entries
from .errors import MalformedLogError


SEND = 'send'
RECV = 'recv'

LogSource = Union[str, Path, Iterable[Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class LogEntry:
    """One message observed on the wire during the original recording."""

    id: int
    type: str
    method: Optional[str] = None
    params: Optional[Mapping[str, Any]] = None
    result: Optional[Mapping[str, Any]] = None

    @property
    def is_send(self) -> bool:
        return self.type == SEND

    @property
    def is_recv(self) -> bool:
        return self.type == RECV

    @classmethod
    def from_dict(cls, data: Any, index: Optional[int] = None) -> 'LogEntry':
        """
        Validate and build an entry from its JSON form.

        Raises:
            MalformedLogError: If required fields for the entry's type are missing
        """
        if not isinstance(data, dict):
            raise MalformedLogError(f"expected an object, got {type(data).__name__}", index)

        entry_id = data.get('id')
        # bool is an int subclass but never a valid correlation id
        if not isinstance(entry_id, int) or isinstance(entry_id, bool):
            raise MalformedLogError(f"missing or non-integer 'id': {entry_id!r}", index)

        entry_type = data.get('type')
        if entry_type == SEND:
            method = data.get('method')
            if not isinstance(method, str) or not method:
                raise MalformedLogError(f"send entry {entry_id} has no 'method'", index)
            params = data.get('params')
            if params is None:
                params = {}
            if not isinstance(params, dict):
                raise MalformedLogError(
                    f"send entry {entry_id} has non-object 'params'", index
                )
            return cls(id=entry_id, type=SEND, method=method, params=MappingProxyType(dict(params)))

        if entry_type == RECV:
            if 'result' not in data:
                raise MalformedLogError(f"recv entry {entry_id} has no 'result'", index)
            result = data['result']
            if not isinstance(result, dict):
                raise MalformedLogError(
                    f"recv entry {entry_id} has non-object 'result'", index
                )
            return cls(id=entry_id, type=RECV, result=MappingProxyType(dict(result)))

        raise MalformedLogError(f"unknown entry type {entry_type!r}", index)

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the JSON log shape."""
        data: Dict[str, Any] = {'id': self.id, 'type': self.type}
        if self.is_send:
            data['method'] = self.method
            data['params'] = dict(self.params or {})
        else:
            data['result'] = dict(self.result or {})
        return data


@dataclass(frozen=True)
class RequestResponsePair:
    """A recorded request and, when it was captured, its response."""

    sent: LogEntry
    received: Optional[LogEntry] = None

    @property
    def id(self) -> int:
        return self.sent.id

    @property
    def method(self) -> str:
        return self.sent.method

    @property
    def params(self) -> Mapping[str, Any]:
        return self.sent.params or {}

    @property
    def has_response(self) -> bool:
        return self.received is not None

    @property
    def recorded_result(self) -> Optional[Mapping[str, Any]]:
        """The recorded response payload, or None if it was never captured."""
        if self.received is None:
            return None
        return self.received.result

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sent': self.sent.to_dict(),
            'received': self.received.to_dict() if self.received else None,
        }


def load(source: LogSource) -> List[LogEntry]:
    """
    Load and validate log entries.

    Args:
        source: A path to a JSON log, the deserialized entry list, or a
                dict wrapping it (see unwrap_entries)

    Returns:
        Entries in recorded order

    Raises:
        MalformedLogError: If any entry lacks the fields its type requires
        FileNotFoundError: If a path source doesn't exist
    """
    if isinstance(source, (str, Path)):
        try:
            raw_entries = LogLoader(source).load()
        except ValueError as e:
            raise MalformedLogError(str(e)) from e
    elif isinstance(source, dict):
        try:
            raw_entries = unwrap_entries(source)
        except ValueError as e:
            raise MalformedLogError(str(e)) from e
    else:
        raw_entries = list(source)

    return [LogEntry.from_dict(raw, index) for index, raw in enumerate(raw_entries)]


def pair(entries: Iterable[LogEntry]) -> List[RequestResponsePair]:
    """
    Match each send entry with the recv entry sharing its id.

    Pairs follow the order of their send entries. A send with no recorded
    response yields a pair whose response half is None.

    Raises:
        MalformedLogError: If a correlation id repeats within a direction
    """
    sends: List[LogEntry] = []
    seen_send_ids = set()
    responses: Dict[int, LogEntry] = {}

    for index, entry in enumerate(entries):
        if entry.is_send:
            if entry.id in seen_send_ids:
                raise MalformedLogError(f"duplicate send id {entry.id}", index)
            seen_send_ids.add(entry.id)
            sends.append(entry)
        else:
            if entry.id in responses:
                raise MalformedLogError(f"duplicate recv id {entry.id}", index)
            responses[entry.id] = entry

    return [RequestResponsePair(sent=sent, received=responses.get(sent.id)) for sent in sends]


def load_pairs(source: LogSource) -> List[RequestResponsePair]:
    """Convenience: load() followed by pair()."""
    return pair(load(source))
