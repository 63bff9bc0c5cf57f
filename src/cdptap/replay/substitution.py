"""
CDPTap Identifier Substitution

Maps server-issued identifiers seen in the recorded session to the ones the
live session hands out, and rewrites outgoing request parameters with them.

Identifiers are learned from a fixed set of identifier-issuing calls (the
extraction rules): the same response field is read from the recorded response
(old value) and from the live response (new value).
"""

import logging
from enum import Enum
from types import MappingProxyType
from typing import Dict, Any, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field

from jsonpath_ng import parse as jsonpath_parse

from .errors import UnresolvedIdentifierError


logger = logging.getLogger("cdptap.replay.substitution")


class IdentifierKind(Enum):
    """Server-issued identifier categories, valued by the parameter field they occupy."""

    TARGET = 'targetId'
    SESSION = 'sessionId'
    FRAME = 'frameId'
    EXECUTION_CONTEXT = 'contextId'

    @property
    def param_field(self) -> str:
        return self.value


@dataclass(frozen=True)
class ExtractionRule:
    """Which response field of an identifier-issuing method feeds which mapping."""

    method: str
    kind: IdentifierKind
    response_paths: Tuple[str, ...]
    _compiled: Tuple[Any, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(
            self, '_compiled', tuple(jsonpath_parse(path) for path in self.response_paths)
        )

    def extract(self, response: Optional[Mapping[str, Any]]) -> Optional[Any]:
        """Return the identifier in the response, or None if no path matches."""
        if not response:
            return None

        data = dict(response)
        for expr in self._compiled:
            matches = expr.find(data)
            if matches and matches[0].value is not None:
                return matches[0].value
        return None


EXTRACTION_RULES: Dict[str, ExtractionRule] = {
    rule.method: rule
    for rule in (
        ExtractionRule('Target.getTargetInfo', IdentifierKind.TARGET, ('$.targetInfo.targetId',)),
        ExtractionRule('Target.attachToTarget', IdentifierKind.SESSION, ('$.sessionId',)),
        ExtractionRule('Page.getResourceTree', IdentifierKind.FRAME, ('$.frameTree.frame.id',)),
        # Some recorders store the isolated world id as contextId
        ExtractionRule(
            'Page.createIsolatedWorld',
            IdentifierKind.EXECUTION_CONTEXT,
            ('$.executionContextId', '$.contextId'),
        ),
    )
}


class SubstitutionTable:
    """
    Old-session to new-session identifier mappings, one per identifier kind.

    Entries are append-only for the lifetime of one replay: the first
    observation for an old value wins and later ones are ignored.

    Example:
        table = SubstitutionTable()
        table.record('Target.getTargetInfo', recorded_result, live_response)
        params = table.rewrite({'targetId': 'OLD1'})
    """

    def __init__(self, strict: bool = False):
        """
        Initialize an empty table.

        Args:
            strict: Raise UnresolvedIdentifierError instead of passing stale
                    identifiers through unchanged
        """
        self.strict = strict
        self._mappings: Dict[IdentifierKind, Dict[Any, Any]] = {kind: {} for kind in IdentifierKind}

    def mapping(self, kind: IdentifierKind) -> Mapping[Any, Any]:
        """Read-only view of one mapping."""
        return MappingProxyType(self._mappings[kind])

    @property
    def target_ids(self) -> Mapping[Any, Any]:
        return self.mapping(IdentifierKind.TARGET)

    @property
    def session_ids(self) -> Mapping[Any, Any]:
        return self.mapping(IdentifierKind.SESSION)

    @property
    def frame_ids(self) -> Mapping[Any, Any]:
        return self.mapping(IdentifierKind.FRAME)

    @property
    def context_ids(self) -> Mapping[Any, Any]:
        return self.mapping(IdentifierKind.EXECUTION_CONTEXT)

    def is_empty(self) -> bool:
        return not any(self._mappings.values())

    def resolve(self, kind: IdentifierKind, old_value: Any) -> Optional[Any]:
        return self._mappings[kind].get(old_value)

    def add(self, kind: IdentifierKind, old_value: Any, new_value: Any) -> bool:
        """
        Insert old -> new unless old is already mapped.

        Returns:
            True if the entry was added
        """
        if not _is_identifier(old_value):
            logger.warning(f"Ignoring {kind.name.lower()} observation with non-scalar value {old_value!r}")
            return False

        mapping = self._mappings[kind]
        if old_value in mapping:
            existing = mapping[old_value]
            if existing != new_value:
                logger.warning(
                    f"Ignoring duplicate {kind.name.lower()} observation: "
                    f"{old_value!r} already maps to {existing!r}, not {new_value!r}"
                )
            else:
                logger.warning(
                    f"Ignoring duplicate {kind.name.lower()} observation: "
                    f"{old_value!r} -> {new_value!r} already recorded"
                )
            return False

        mapping[old_value] = new_value
        logger.debug(f"Mapped {kind.name.lower()} {old_value!r} -> {new_value!r}")
        return True

    def rewrite(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Return a copy of params with recognized identifier fields substituted.

        Only top-level fields are inspected; nested occurrences are left
        untouched. Unknown identifiers pass through unchanged unless strict.

        Raises:
            UnresolvedIdentifierError: In strict mode, for an unmapped identifier
        """
        rewritten = dict(params)

        for kind in IdentifierKind:
            param_field = kind.param_field
            old_value = rewritten.get(param_field)
            if old_value is None:
                continue
            if not _is_identifier(old_value):
                logger.warning(f"{param_field} holds non-scalar {old_value!r}, sending it unchanged")
                continue

            mapping = self._mappings[kind]
            if old_value in mapping:
                rewritten[param_field] = mapping[old_value]
            elif self.strict:
                raise UnresolvedIdentifierError(kind.name.lower(), old_value)
            else:
                logger.warning(
                    f"No {kind.name.lower()} substitution for {old_value!r}, sending it unchanged"
                )

        return rewritten

    def record(
        self,
        method: str,
        recorded_response: Optional[Mapping[str, Any]],
        live_response: Optional[Mapping[str, Any]]
    ) -> bool:
        """
        Learn a substitution from an identifier-issuing call.

        Args:
            method: Protocol method of the replayed request
            recorded_response: Result stored in the log (None if never recorded)
            live_response: Result returned by the live session

        Returns:
            True if a new mapping entry was added
        """
        rule = EXTRACTION_RULES.get(method)
        if rule is None:
            return False

        old_value = rule.extract(recorded_response)
        new_value = rule.extract(live_response)
        if old_value is None or new_value is None:
            logger.debug(
                f"{method}: identifier missing from "
                f"{'recorded' if old_value is None else 'live'} response, nothing recorded"
            )
            return False

        return self.add(rule.kind, old_value, new_value)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every mapping keyed by parameter field, for JSON output."""
        return {
            kind.param_field: {str(k): v for k, v in mapping.items()}
            for kind, mapping in self._mappings.items()
        }

    def __len__(self) -> int:
        return sum(len(mapping) for mapping in self._mappings.values())


def identifier_issuing_methods() -> List[str]:
    """Methods whose responses feed the substitution table."""
    return list(EXTRACTION_RULES)


def _is_identifier(value: Any) -> bool:
    # Protocol identifiers are strings or numbers; anything else cannot key a mapping
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)
