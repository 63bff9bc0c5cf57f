"""
CDPTap Common Utilities

Shared utilities and helpers used across CDPTap modules.
"""

from .utils import LogLoader, safe_json_parse, unwrap_entries

__all__ = [
    'LogLoader',
    'safe_json_parse',
    'unwrap_entries',
]
