"""
Shared fixtures for CDPTap tests.
"""

import pytest


class FakeSession:
    """
    In-memory live session.

    Args:
        responses: method -> response dict, list of dicts (served in order),
                   or callable(params) -> dict
        fail_on: methods whose send raises ConnectionError
    """

    def __init__(self, responses=None, fail_on=None):
        self.responses = dict(responses or {})
        self.fail_on = set(fail_on or [])
        self.sent = []
        self.handlers = {}
        self.closed = False

    async def send(self, method, params=None):
        self.sent.append((method, dict(params or {})))
        if method in self.fail_on:
            raise ConnectionError(f"channel closed during {method}")

        response = self.responses.get(method, {})
        if callable(response):
            return response(params)
        if isinstance(response, list):
            return response.pop(0)
        return response

    def on(self, event_name, handler):
        self.handlers.setdefault(event_name, []).append(handler)

    def off(self, event_name, handler):
        self.handlers[event_name].remove(handler)

    async def close(self):
        self.closed = True

    @property
    def sent_methods(self):
        return [method for method, _ in self.sent]


@pytest.fixture
def fake_session_class():
    """The FakeSession class, for tests that need custom responses."""
    return FakeSession


@pytest.fixture
def sample_log():
    """Recorded log touching every identifier kind."""
    return [
        {'id': 1, 'type': 'send', 'method': 'Target.getTargetInfo', 'params': {}},
        {'id': 1, 'type': 'recv', 'result': {'targetInfo': {'targetId': 'OLD-TARGET', 'type': 'page'}}},
        {'id': 2, 'type': 'send', 'method': 'Target.attachToTarget', 'params': {'targetId': 'OLD-TARGET', 'flatten': True}},
        {'id': 2, 'type': 'recv', 'result': {'sessionId': 'OLD-SESSION'}},
        {'id': 3, 'type': 'send', 'method': 'Page.getResourceTree', 'params': {}},
        {'id': 3, 'type': 'recv', 'result': {'frameTree': {'frame': {'id': 'OLD-FRAME', 'url': 'https://example.com/'}}}},
        {'id': 4, 'type': 'send', 'method': 'Page.createIsolatedWorld', 'params': {'frameId': 'OLD-FRAME', 'worldName': 'lighthouse_isolated_context'}},
        {'id': 4, 'type': 'recv', 'result': {'executionContextId': 7}},
        {'id': 5, 'type': 'send', 'method': 'Runtime.evaluate', 'params': {'expression': '1 + 1', 'contextId': 7}},
        {'id': 5, 'type': 'recv', 'result': {'result': {'type': 'number', 'value': 2}}},
        {'id': 6, 'type': 'send', 'method': 'Target.detachFromTarget', 'params': {'sessionId': 'OLD-SESSION'}},
        {'id': 6, 'type': 'recv', 'result': {}},
    ]


@pytest.fixture
def live_responses():
    """Live-session responses matching sample_log with new identifiers."""
    return {
        'Target.getTargetInfo': {'targetInfo': {'targetId': 'NEW-TARGET', 'type': 'page'}},
        'Target.attachToTarget': {'sessionId': 'NEW-SESSION'},
        'Page.getResourceTree': {'frameTree': {'frame': {'id': 'NEW-FRAME', 'url': 'https://example.com/'}}},
        'Page.createIsolatedWorld': {'executionContextId': 42},
        'Runtime.evaluate': {'result': {'type': 'number', 'value': 2}},
    }
