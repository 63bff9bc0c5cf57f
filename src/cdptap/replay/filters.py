"""
Filtering logic for CDPTap.

Decides which recorded request/response pairs are replayed. Rejected pairs
are excluded entirely: they are never sent and never feed the substitution
table, so identifiers only their responses carry stay unresolved later on.
"""

import logging
import re
from typing import Callable, Iterable, List, Optional

from .errors import ReplayConfigError
from .log_model import RequestResponsePair


logger = logging.getLogger("cdptap.replay.filters")

PairPredicate = Callable[[RequestResponsePair], bool]


def accept_all(pair: RequestResponsePair) -> bool:
    """Default predicate: replay every pair."""
    return True


class CommandFilter:
    """
    Rule-based predicate over recorded commands.

    Supports:
    - Method prefix skipping (e.g., "Debugger." skips every Debugger command)
    - Exact method exceptions that are kept despite a matching prefix
      (e.g., skip "Network." but keep "Network.enable")
    - Regex pattern skipping on the method name
    """

    def __init__(
        self,
        skip_prefixes: Optional[Iterable[str]] = None,
        allow_methods: Optional[Iterable[str]] = None,
        skip_pattern: Optional[str] = None
    ):
        """
        Initialize the filter.

        Args:
            skip_prefixes: Method prefixes to drop from the replay
            allow_methods: Exact method names kept even when a prefix matches
            skip_pattern: Optional regex; methods it matches are dropped

        Raises:
            ReplayConfigError: If skip_pattern is not a valid regex
        """
        self.skip_prefixes: List[str] = list(skip_prefixes or [])
        self.allow_methods = set(allow_methods or [])
        self.skip_pattern = None

        if skip_pattern:
            try:
                self.skip_pattern = re.compile(skip_pattern)
            except re.error as e:
                raise ReplayConfigError(f"Invalid skip pattern {skip_pattern!r}: {e}") from e

    def __call__(self, pair: RequestResponsePair) -> bool:
        return self.should_replay(pair)

    def should_replay(self, pair: RequestResponsePair) -> bool:
        """
        Determine if a pair should be replayed.

        Filtering logic:
        - If no rules configured: replay everything
        - Explicitly allowed methods always replay
        - Otherwise any matching prefix or pattern rejects the pair
        """
        method = pair.method

        if method in self.allow_methods:
            return True

        for prefix in self.skip_prefixes:
            if method.startswith(prefix):
                logger.debug(f"[SKIP] {pair.id} {method} (prefix: {prefix})")
                return False

        if self.skip_pattern and self.skip_pattern.search(method):
            logger.debug(f"[SKIP] {pair.id} {method} (pattern: {self.skip_pattern.pattern})")
            return False

        return True


def apply_filter(
    pairs: Iterable[RequestResponsePair],
    predicate: Optional[PairPredicate] = None
) -> List[RequestResponsePair]:
    """
    Return the pairs the predicate accepts, in their original order.

    The predicate is evaluated exactly once per pair.
    """
    predicate = predicate or accept_all
    return [p for p in pairs if predicate(p)]
