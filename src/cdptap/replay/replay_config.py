"""
CDPTap Replay Configuration

YAML-based replay settings: which recorded commands to skip, which delays and
probes to run around each step, and how strictly identifiers are resolved.

Example file:

    name: lighthouse-installability
    strict: false
    watch_events:
      - ServiceWorker.workerRegistrationUpdated
    filter:
      skip_prefixes: [CSS., Debugger., Emulation.]
      allow_methods: [Network.enable]
    delays:
      before:
        Page.getInstallabilityErrors: 10000
      after_each_ms: 50
    probe:
      method: Page.getInstallabilityErrors
    log_steps: true
"""

from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

import yaml

from .errors import ReplayConfigError
from .filters import CommandFilter
from .hooks import ReplayHooks, CompositeHooks, DelayHook, LoggingHook, ProbeHook
from .replayer import DEFAULT_WATCH_EVENTS


@dataclass
class FilterSettings:
    """Rules for CommandFilter."""

    skip_prefixes: List[str] = field(default_factory=list)
    allow_methods: List[str] = field(default_factory=list)
    skip_pattern: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'FilterSettings':
        data = _require_mapping(data, 'filter')
        return cls(
            skip_prefixes=_require_str_list(data.get('skip_prefixes'), 'filter.skip_prefixes'),
            allow_methods=_require_str_list(data.get('allow_methods'), 'filter.allow_methods'),
            skip_pattern=data.get('skip_pattern'),
        )


@dataclass
class DelaySettings:
    """Artificial delays around steps, in milliseconds."""

    before: Dict[str, int] = field(default_factory=dict)
    after_each_ms: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'DelaySettings':
        data = _require_mapping(data, 'delays')
        before = _require_mapping(data.get('before'), 'delays.before')
        for method, delay in before.items():
            if not isinstance(delay, int) or delay < 0:
                raise ReplayConfigError(f"delays.before.{method} must be a non-negative integer")

        after_each_ms = data.get('after_each_ms', 0) or 0
        if not isinstance(after_each_ms, int) or after_each_ms < 0:
            raise ReplayConfigError("delays.after_each_ms must be a non-negative integer")

        return cls(before=dict(before), after_each_ms=after_each_ms)


@dataclass
class ProbeSettings:
    """Diagnostic command sent after every step."""

    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['ProbeSettings']:
        if data is None:
            return None
        data = _require_mapping(data, 'probe')
        method = data.get('method')
        if not isinstance(method, str) or not method:
            raise ReplayConfigError("probe.method is required")
        return cls(method=method, params=_require_mapping(data.get('params'), 'probe.params'))


@dataclass
class ReplayConfig:
    """Complete replay configuration."""

    name: str = "replay"
    strict: bool = False
    watch_events: List[str] = field(default_factory=lambda: list(DEFAULT_WATCH_EVENTS))
    filter: FilterSettings = field(default_factory=FilterSettings)
    delays: DelaySettings = field(default_factory=DelaySettings)
    probe: Optional[ProbeSettings] = None
    log_steps: bool = False

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'ReplayConfig':
        """Load configuration from YAML file."""
        try:
            with open(yaml_path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ReplayConfigError(f"Invalid YAML in {yaml_path}: {e}") from e

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReplayConfig':
        """Create configuration from dictionary."""
        data = _require_mapping(data, 'config')

        watch_events = data.get('watch_events')
        if watch_events is None:
            watch_events = list(DEFAULT_WATCH_EVENTS)

        return cls(
            name=data.get('name', 'replay'),
            strict=bool(data.get('strict', False)),
            watch_events=_require_str_list(watch_events, 'watch_events'),
            filter=FilterSettings.from_dict(data.get('filter')),
            delays=DelaySettings.from_dict(data.get('delays')),
            probe=ProbeSettings.from_dict(data.get('probe')),
            log_steps=bool(data.get('log_steps', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'strict': self.strict,
            'watch_events': self.watch_events,
            'filter': {
                'skip_prefixes': self.filter.skip_prefixes,
                'allow_methods': self.filter.allow_methods,
                'skip_pattern': self.filter.skip_pattern,
            },
            'delays': {
                'before': self.delays.before,
                'after_each_ms': self.delays.after_each_ms,
            },
            'log_steps': self.log_steps,
        }
        if self.probe:
            data['probe'] = {'method': self.probe.method, 'params': self.probe.params}
        return data

    def save(self, yaml_path: str):
        """Save configuration to YAML file."""
        with open(yaml_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def build_filter(self) -> CommandFilter:
        return CommandFilter(
            skip_prefixes=self.filter.skip_prefixes,
            allow_methods=self.filter.allow_methods,
            skip_pattern=self.filter.skip_pattern,
        )

    def build_hooks(self, session: Any = None) -> Optional[ReplayHooks]:
        """
        Build the configured hook chain (logging, delays, probe, in that order).

        Args:
            session: Live session the probe is sent over; required if a probe
                     is configured
        """
        hooks: List[ReplayHooks] = []

        if self.log_steps:
            hooks.append(LoggingHook())

        if self.delays.before or self.delays.after_each_ms:
            hooks.append(DelayHook(self.delays.before, self.delays.after_each_ms))

        if self.probe:
            if session is None:
                raise ReplayConfigError("A live session is required to run the probe hook")
            hooks.append(ProbeHook(session, self.probe.method, self.probe.params))

        if not hooks:
            return None
        return CompositeHooks(hooks)

    def engine_options(self, session: Any = None) -> Dict[str, Any]:
        """Keyword arguments for ReplayEngine."""
        return {
            'filter_commands': self.build_filter(),
            'hooks': self.build_hooks(session),
            'strict': self.strict,
            'watch_events': self.watch_events,
        }


def _require_mapping(value: Any, name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ReplayConfigError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


def _require_str_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ReplayConfigError(f"'{name}' must be a list of strings")
    return list(value)
