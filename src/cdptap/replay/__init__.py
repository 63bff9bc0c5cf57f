"""
CDPTap Replay Module

Session-relative replay of recorded protocol logs.

This module provides:
- Log loading, validation and request/response pairing
- Command filtering
- Identifier substitution between recorded and live sessions
- The sequential replay engine and its lifecycle hooks
- YAML replay configuration
"""

from .errors import (
    ReplayError,
    MalformedLogError,
    UnresolvedIdentifierError,
    TransportError,
    HookError,
    ReplayConfigError,
)
from .log_model import LogEntry, RequestResponsePair, load, pair, load_pairs
from .filters import CommandFilter, accept_all, apply_filter
from .substitution import SubstitutionTable, IdentifierKind, ExtractionRule, EXTRACTION_RULES
from .hooks import ReplayHooks, CallbackHooks, CompositeHooks, LoggingHook, DelayHook, ProbeHook
from .replayer import ReplayEngine, ReplayResult, ReplayState, ReplayStatus, StepRecord
from .replay_config import ReplayConfig

__all__ = [
    'ReplayError',
    'MalformedLogError',
    'UnresolvedIdentifierError',
    'TransportError',
    'HookError',
    'ReplayConfigError',
    'LogEntry',
    'RequestResponsePair',
    'load',
    'pair',
    'load_pairs',
    'CommandFilter',
    'accept_all',
    'apply_filter',
    'SubstitutionTable',
    'IdentifierKind',
    'ExtractionRule',
    'EXTRACTION_RULES',
    'ReplayHooks',
    'CallbackHooks',
    'CompositeHooks',
    'LoggingHook',
    'DelayHook',
    'ProbeHook',
    'ReplayEngine',
    'ReplayResult',
    'ReplayState',
    'ReplayStatus',
    'StepRecord',
    'ReplayConfig',
]
