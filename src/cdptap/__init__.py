"""
CDPTap - session-relative replay of recorded DevTools protocol logs.
"""

from .replay import ReplayEngine, ReplayConfig, CommandFilter, SubstitutionTable, load, pair

__all__ = [
    'ReplayEngine',
    'ReplayConfig',
    'CommandFilter',
    'SubstitutionTable',
    'load',
    'pair',
]

__version__ = '1.0.0'
