"""Protocol tests for the Ophanim client against a local WebSocket server."""
from contextlib import asynccontextmanager
import json
import os
import socket
import sys
import pytest

# Add the src directory to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from websockets.asyncio.server import serve

from muxnet.config import OphanimConfig
from muxnet.ophanim.client import (
    BackendConnectionError,
    OphanimClient,
    ProtocolError,
    ProtocolPhase,
    ProtocolTimeoutError,
)
from muxnet.ophanim.history import ConversationHistory, Exchange


@asynccontextmanager
async def fake_backend(handler, read_timeout_seconds: float = 2.0):
    async with serve(handler, '127.0.0.1', 0) as server:
        port = next(iter(server.sockets)).getsockname()[1]
        yield OphanimConfig(
            host='127.0.0.1',
            port=port,
            proto='ws',
            read_timeout_seconds=read_timeout_seconds,
        )


def _completed(prompt: str, response: str) -> str:
    return json.dumps({
        'msg': 'process_completed',
        'output': {'data': [[['earlier', 'turn'], [prompt, response]], None]},
        'success': True,
    })


async def _handshake(websocket, received: list):
    await websocket.send(json.dumps({'msg': 'send_hash'}))
    received.append(json.loads(await websocket.recv()))


class TestOphanimClient:

    @pytest.mark.asyncio
    async def test_full_exchange(self):
        received = []

        async def handler(websocket):
            await _handshake(websocket, received)
            await websocket.send(json.dumps({'msg': 'estimation', 'rank': 0, 'queue_size': 1}))
            await websocket.send(json.dumps({'msg': 'send_data'}))
            request = json.loads(await websocket.recv())
            received.append(request)
            await websocket.send(json.dumps({'msg': 'process_starts'}))
            await websocket.send(json.dumps({'msg': 'process_generating', 'output': {'data': []}}))
            await websocket.send(_completed(request['data'][4][-1][0], 'ls -la'))

        async with fake_backend(handler) as config:
            client = OphanimClient(config, session_hash='abcdef12-34')
            history = ConversationHistory()

            response = await client.prompt_chatbot('list files', history)

        assert response == 'ls -la'
        assert received[0] == {'fn_index': 4, 'session_hash': 'abcdef12-34'}
        assert received[1]['fn_index'] == 6
        assert received[1]['session_hash'] == 'abcdef12-34'
        assert received[1]['data'][4] == [['list files', '']]
        assert history.exchanges == [Exchange(prompt='list files', response='ls -la')]
        assert history.session_hash == 'abcdef12-34'
        assert client.phase == ProtocolPhase.CLOSED

    @pytest.mark.asyncio
    async def test_continuation_sends_prior_turns(self):
        received = []

        async def handler(websocket):
            await _handshake(websocket, received)
            await websocket.send(json.dumps({'msg': 'send_data'}))
            received.append(json.loads(await websocket.recv()))
            await websocket.send(_completed('second', 'pwd'))

        async with fake_backend(handler) as config:
            history = ConversationHistory(exchanges=[Exchange(prompt='first', response='ls')])
            response = await OphanimClient(config).prompt_chatbot('second', history, continuation=True)

        assert response == 'pwd'
        assert received[1]['data'][4] == [['first', 'ls'], ['second', '']]
        assert len(history) == 2

    def test_session_hash_is_stable_per_client(self):
        client = OphanimClient(OphanimConfig())
        assert len(client.session_hash) == 11
        assert client.session_hash == client.session_hash
        assert OphanimClient(OphanimConfig()).session_hash != client.session_hash

    @pytest.mark.asyncio
    async def test_normal_close_returns_empty_result(self):
        async def handler(websocket):
            await _handshake(websocket, [])
            # Returning closes the channel with code 1000

        async with fake_backend(handler) as config:
            history = ConversationHistory()
            response = await OphanimClient(config).prompt_chatbot('list files', history)

        assert response == ''
        assert len(history) == 0

    @pytest.mark.asyncio
    async def test_abnormal_close_is_protocol_error(self):
        async def handler(websocket):
            await _handshake(websocket, [])
            await websocket.close(code=1011, reason='internal error')

        async with fake_backend(handler) as config:
            with pytest.raises(ProtocolError):
                await OphanimClient(config).prompt_chatbot('list files', ConversationHistory())

    @pytest.mark.asyncio
    async def test_unexpected_handshake_message(self):
        async def handler(websocket):
            await websocket.send(json.dumps({'msg': 'send_data'}))
            await websocket.wait_closed()

        async with fake_backend(handler) as config:
            with pytest.raises(ProtocolError, match='handshake'):
                await OphanimClient(config).prompt_chatbot('list files', ConversationHistory())

    @pytest.mark.asyncio
    async def test_malformed_message(self):
        async def handler(websocket):
            await _handshake(websocket, [])
            await websocket.send('this is not json')
            await websocket.wait_closed()

        async with fake_backend(handler) as config:
            with pytest.raises(ProtocolError, match='Malformed'):
                await OphanimClient(config).prompt_chatbot('list files', ConversationHistory())

    @pytest.mark.asyncio
    async def test_unknown_message_type(self):
        async def handler(websocket):
            await _handshake(websocket, [])
            await websocket.send(json.dumps({'msg': 'queue_full'}))
            await websocket.wait_closed()

        async with fake_backend(handler) as config:
            with pytest.raises(ProtocolError, match='queue_full'):
                await OphanimClient(config).prompt_chatbot('list files', ConversationHistory())

    @pytest.mark.asyncio
    async def test_completion_without_data(self):
        async def handler(websocket):
            await _handshake(websocket, [])
            await websocket.send(json.dumps({'msg': 'process_completed', 'output': {'error': None}}))
            await websocket.wait_closed()

        async with fake_backend(handler) as config:
            history = ConversationHistory()
            with pytest.raises(ProtocolError):
                await OphanimClient(config).prompt_chatbot('list files', history)
            assert len(history) == 0

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        async def handler(websocket):
            await _handshake(websocket, [])
            await websocket.wait_closed()

        async with fake_backend(handler, read_timeout_seconds=0.2) as config:
            with pytest.raises(ProtocolTimeoutError) as exc_info:
                await OphanimClient(config).prompt_chatbot('list files', ConversationHistory())

        assert exc_info.value.phase == ProtocolPhase.STREAMING

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        with socket.socket() as sock:
            sock.bind(('127.0.0.1', 0))
            port = sock.getsockname()[1]

        config = OphanimConfig(host='127.0.0.1', port=port, proto='ws', open_timeout_seconds=2.0)
        with pytest.raises(BackendConnectionError):
            await OphanimClient(config).prompt_chatbot('list files', ConversationHistory())
