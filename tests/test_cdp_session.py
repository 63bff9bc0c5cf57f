"""
Tests for the live DevTools session.

Uses an in-memory WebSocket so no browser is needed.
"""

import pytest
import asyncio
import json
import logging
from unittest.mock import AsyncMock, Mock, patch

import requests

from cdptap.replay.errors import TransportError
from cdptap.session import CDPSession, get_browser_websocket_url, get_page_websocket_url


class FakeWebSocket:
    """WebSocket double: records outgoing frames, serves queued incoming ones."""

    def __init__(self):
        self.outgoing = []
        self.incoming = asyncio.Queue()
        self.closed = False

    async def send(self, raw):
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.outgoing.append(json.loads(raw))

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True

    def push(self, message):
        self.incoming.put_nowait(json.dumps(message))


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


async def open_session(session_id=None):
    ws = FakeWebSocket()
    session = CDPSession(ws, session_id=session_id)
    session.start()
    return ws, session


class TestCommands:
    """Test request/response correlation."""

    def test_send_returns_result(self):
        async def scenario():
            ws, session = await open_session()
            pending = asyncio.ensure_future(session.send('Page.getResourceTree'))
            await settle()
            ws.push({'id': ws.outgoing[0]['id'], 'result': {'frameTree': {}}})
            result = await pending
            await session.close()
            return ws, result

        ws, result = asyncio.run(scenario())

        assert result == {'frameTree': {}}
        assert ws.outgoing == [{'id': 1, 'method': 'Page.getResourceTree', 'params': {}}]

    def test_responses_matched_by_id_not_order(self):
        async def scenario():
            ws, session = await open_session()
            first = asyncio.ensure_future(session.send('A.one'))
            second = asyncio.ensure_future(session.send('B.two'))
            await settle()
            ids = [m['id'] for m in ws.outgoing]
            ws.push({'id': ids[1], 'result': {'n': 2}})
            ws.push({'id': ids[0], 'result': {'n': 1}})
            results = await asyncio.gather(first, second)
            await session.close()
            return results

        assert asyncio.run(scenario()) == [{'n': 1}, {'n': 2}]

    def test_protocol_error_raises(self):
        async def scenario():
            ws, session = await open_session()
            pending = asyncio.ensure_future(session.send('Target.attachToTarget', {'targetId': 'GONE'}))
            await settle()
            ws.push({'id': 1, 'error': {'code': -32602, 'message': 'No target with given id found'}})
            try:
                await pending
            finally:
                await session.close()

        with pytest.raises(TransportError, match='No target with given id found'):
            asyncio.run(scenario())

    def test_session_id_attached(self):
        async def scenario():
            ws, session = await open_session(session_id='S1')
            pending = asyncio.ensure_future(session.send('Page.enable'))
            other = asyncio.ensure_future(session.send('Page.enable', session_id='S2'))
            await settle()
            ws.push({'id': 1, 'result': {}})
            ws.push({'id': 2, 'result': {}})
            await asyncio.gather(pending, other)
            await session.close()
            return ws

        ws = asyncio.run(scenario())

        assert [m['sessionId'] for m in ws.outgoing] == ['S1', 'S2']

    def test_non_json_message_ignored(self):
        async def scenario():
            ws, session = await open_session()
            pending = asyncio.ensure_future(session.send('Page.enable'))
            await settle()
            ws.incoming.put_nowait('not json')
            ws.push({'id': 1, 'result': {'ok': True}})
            result = await pending
            await session.close()
            return result

        assert asyncio.run(scenario()) == {'ok': True}


class TestEvents:
    """Test push event dispatch."""

    def test_sync_and_async_handlers(self):
        received = []

        async def async_handler(params):
            received.append(('async', params))

        async def scenario():
            ws, session = await open_session()
            session.on('Page.loadEventFired', lambda params: received.append(('sync', params)))
            session.on('Page.loadEventFired', async_handler)
            ws.push({'method': 'Page.loadEventFired', 'params': {'timestamp': 1.5}})
            await settle()
            await session.close()

        asyncio.run(scenario())

        assert received == [('sync', {'timestamp': 1.5}), ('async', {'timestamp': 1.5})]

    def test_events_from_other_sessions_ignored(self):
        received = []

        async def scenario():
            ws, session = await open_session(session_id='S1')
            session.on('Runtime.consoleAPICalled', received.append)
            ws.push({'method': 'Runtime.consoleAPICalled', 'params': {'n': 1}, 'sessionId': 'S2'})
            ws.push({'method': 'Runtime.consoleAPICalled', 'params': {'n': 2}, 'sessionId': 'S1'})
            await settle()
            await session.close()

        asyncio.run(scenario())

        assert received == [{'n': 2}]

    def test_failing_handler_does_not_break_session(self, caplog):
        received = []

        def broken(params):
            raise KeyError('oops')

        async def scenario():
            ws, session = await open_session()
            session.on('ServiceWorker.workerRegistrationUpdated', broken)
            session.on('ServiceWorker.workerRegistrationUpdated', received.append)
            pending = asyncio.ensure_future(session.send('Page.getInstallabilityErrors'))
            await settle()
            ws.push({'method': 'ServiceWorker.workerRegistrationUpdated', 'params': {'registrations': []}})
            ws.push({'id': 1, 'result': {'installabilityErrors': []}})
            result = await pending
            closed = session.closed
            await session.close()
            return result, closed

        with caplog.at_level(logging.ERROR, logger='cdptap.session'):
            result, closed = asyncio.run(scenario())

        assert result == {'installabilityErrors': []}
        assert closed is False
        assert received == [{'registrations': []}]
        assert 'Handler for ServiceWorker.workerRegistrationUpdated failed' in caplog.text

    def test_failing_async_handler_is_logged(self, caplog):
        async def broken(params):
            raise ValueError('bad event')

        async def scenario():
            ws, session = await open_session()
            session.on('Inspector.detached', broken)
            ws.push({'method': 'Inspector.detached', 'params': {'reason': 'target_closed'}})
            await settle()
            pending_tasks = len(session._handler_tasks)
            pending = asyncio.ensure_future(session.send('Page.enable'))
            await settle()
            ws.push({'id': 1, 'result': {}})
            result = await pending
            await session.close()
            return pending_tasks, result

        with caplog.at_level(logging.ERROR, logger='cdptap.session'):
            pending_tasks, result = asyncio.run(scenario())

        assert pending_tasks == 0
        assert result == {}
        assert 'bad event' in caplog.text

    def test_off_unsubscribes(self):
        received = []

        async def scenario():
            ws, session = await open_session()
            session.on('Page.frameNavigated', received.append)
            session.off('Page.frameNavigated', received.append)
            ws.push({'method': 'Page.frameNavigated', 'params': {}})
            await settle()
            await session.close()

        asyncio.run(scenario())

        assert received == []


class TestChannelFailures:
    """Test behaviour when the channel goes away."""

    def test_connection_drop_fails_pending(self):
        async def scenario():
            ws, session = await open_session()
            pending = asyncio.ensure_future(session.send('Page.getInstallabilityErrors'))
            await settle()
            ws.incoming.put_nowait(ConnectionResetError('peer reset'))
            with pytest.raises(TransportError, match='Channel closed'):
                await pending
            with pytest.raises(TransportError, match='session closed'):
                await session.send('Page.enable')
            closed = session.closed
            await session.close()
            return closed

        assert asyncio.run(scenario()) is True

    def test_close_fails_pending_and_closes_socket(self):
        async def scenario():
            ws, session = await open_session()
            pending = asyncio.ensure_future(session.send('Page.enable'))
            await settle()
            await session.close()
            with pytest.raises(TransportError):
                await pending
            return ws

        assert asyncio.run(scenario()).closed is True

    def test_send_failure_raises_transport_error(self):
        async def scenario():
            ws, session = await open_session()
            ws.closed = True
            try:
                await session.send('Page.enable')
            finally:
                await session.close()

        with pytest.raises(TransportError, match='Cannot send Page.enable'):
            asyncio.run(scenario())


class TestConnect:
    """Test opening sessions."""

    def test_connect_starts_reader(self):
        async def scenario():
            ws = FakeWebSocket()
            with patch('cdptap.session.cdp_session.websockets.connect', new=AsyncMock(return_value=ws)) as mock_connect:
                session = await CDPSession.connect('ws://127.0.0.1:9222/devtools/page/ABC')
            started = session._reader_task is not None
            await session.close()
            return mock_connect, started

        mock_connect, started = asyncio.run(scenario())

        mock_connect.assert_awaited_once_with('ws://127.0.0.1:9222/devtools/page/ABC', max_size=None)
        assert started is True

    def test_connect_failure(self):
        with patch('cdptap.session.cdp_session.websockets.connect', new=AsyncMock(side_effect=OSError('refused'))):
            with pytest.raises(TransportError, match='Could not connect'):
                asyncio.run(CDPSession.connect('ws://127.0.0.1:1/devtools/page/X'))


class TestEndpointDiscovery:
    """Test DevTools HTTP endpoint discovery."""

    @patch('cdptap.session.cdp_session.requests.get')
    def test_page_websocket_url(self, mock_get):
        mock_get.return_value = Mock(json=Mock(return_value=[
            {'type': 'service_worker', 'webSocketDebuggerUrl': 'ws://sw'},
            {'type': 'page', 'webSocketDebuggerUrl': 'ws://page'},
        ]))

        assert get_page_websocket_url(port=9333) == 'ws://page'
        mock_get.assert_called_once_with('http://127.0.0.1:9333/json/list', timeout=5)

    @patch('cdptap.session.cdp_session.requests.get')
    def test_browser_websocket_url(self, mock_get):
        mock_get.return_value = Mock(json=Mock(return_value={'webSocketDebuggerUrl': 'ws://browser'}))

        assert get_browser_websocket_url() == 'ws://browser'

    @patch('cdptap.session.cdp_session.requests.get')
    def test_no_page_target(self, mock_get):
        mock_get.return_value = Mock(json=Mock(return_value=[{'type': 'background_page'}]))

        with pytest.raises(TransportError, match='No page target'):
            get_page_websocket_url()

    @patch('cdptap.session.cdp_session.requests.get')
    def test_endpoint_unreachable(self, mock_get):
        mock_get.side_effect = requests.ConnectionError('refused')

        with pytest.raises(TransportError, match='unavailable'):
            get_browser_websocket_url()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
