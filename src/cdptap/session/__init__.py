"""
CDPTap Session Module

Live DevTools session used as the replay target.
"""

from .cdp_session import CDPSession, get_browser_websocket_url, get_page_websocket_url

__all__ = [
    'CDPSession',
    'get_browser_websocket_url',
    'get_page_websocket_url',
]
