from enum import Enum
import asyncio
import json
import logging
import uuid

from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ..config import OphanimConfig
from .history import ConversationHistory, Exchange
from .messages import (
    PASSIVE_MESSAGE_TYPES,
    JoinMessage,
    ServerMessage,
    construct_client_message,
    extract_completed_turn,
)


logger = logging.getLogger(__name__)


class OphanimError(Exception):
    def __init__(self, message: str):
        super().__init__(message)


class BackendConnectionError(OphanimError):
    """Raised when the backend channel cannot be opened."""


class ProtocolError(OphanimError):
    """Raised when the backend breaks the queue protocol or the channel fails mid-exchange."""


class ProtocolTimeoutError(ProtocolError):

    def __init__(self, timeout_seconds: float, phase: 'ProtocolPhase'):
        self.timeout_seconds = timeout_seconds
        self.phase = phase
        super().__init__(f'No message from backend within {timeout_seconds} seconds ({phase.value})')


class ProtocolPhase(Enum):
    CONNECTING = 'connecting'
    AWAITING_HANDSHAKE_CUE = 'awaiting_handshake_cue'
    """Channel open; waiting for the server to ask for the session hash."""
    JOINED = 'joined'
    """Join message sent."""
    STREAMING = 'streaming'
    """Listening for queue notifications until completion or closure."""
    COMPLETED = 'completed'
    CLOSED = 'closed'


def generate_session_hash() -> str:
    return str(uuid.uuid4())[:11]


class OphanimClient:
    """
    Client for the Ophanim text-generation backend.

    Each call to `prompt_chatbot` opens its own channel and closes it before returning;
    the session hash is generated once per client and shared by all calls.
    """

    def __init__(self, config: OphanimConfig | None = None, session_hash: str | None = None):
        self._config = config or OphanimConfig.from_env()
        self._session_hash = session_hash or generate_session_hash()
        self._phase = ProtocolPhase.CLOSED

    @property
    def session_hash(self) -> str:
        return self._session_hash

    @property
    def phase(self) -> ProtocolPhase:
        return self._phase

    async def prompt_chatbot(
        self,
        user_input: str,
        history: ConversationHistory,
        continuation: bool = False,
    ) -> str:
        """Runs one request/response exchange with the backend.

        On completion the new exchange is appended to `history`.

        :param user_input: The prompt.
        :param history: The conversation this exchange belongs to.
        :param continuation: Whether prior exchanges of `history` are sent as context.
        :return: The generated text; empty if the server closed the channel normally before completing.
        """

        request = construct_client_message(user_input, history, self._session_hash, continuation=continuation)

        self._set_phase(ProtocolPhase.CONNECTING)
        try:
            websocket = await connect(self._config.url, open_timeout=self._config.open_timeout_seconds)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._set_phase(ProtocolPhase.CLOSED)
            raise BackendConnectionError(f'Failed to connect to {self._config.url}: {e}') from e

        try:
            async with websocket:
                await self._join(websocket)
                return await self._stream(websocket, request.model_dump_json(), history)
        finally:
            self._set_phase(ProtocolPhase.CLOSED)

    async def _join(self, websocket: ClientConnection):
        self._set_phase(ProtocolPhase.AWAITING_HANDSHAKE_CUE)
        try:
            message = await self._receive(websocket)
        except ConnectionClosed as e:
            raise ProtocolError(f'Channel closed before handshake: {e}') from e

        if message.msg != 'send_hash':
            raise ProtocolError(f'Unexpected message from server during handshake: {message.msg!r}')

        await self._send(websocket, JoinMessage(session_hash=self._session_hash).model_dump_json())
        self._set_phase(ProtocolPhase.JOINED)

    async def _stream(self, websocket: ClientConnection, request: str, history: ConversationHistory) -> str:
        self._set_phase(ProtocolPhase.STREAMING)
        model_response = ''

        while True:
            try:
                message = await self._receive(websocket)
            except ConnectionClosedOK:
                logger.warning('Backend closed the channel before completing the request')
                return model_response
            except ConnectionClosed as e:
                raise ProtocolError(f'Channel closed unexpectedly: {e}') from e

            if message.msg == 'send_data':
                await self._send(websocket, request)
            elif message.msg in PASSIVE_MESSAGE_TYPES:
                continue
            elif message.msg == 'process_completed':
                turn = extract_completed_turn(message)
                if turn is None:
                    raise ProtocolError('Completion message carries no generated text')

                history.append(Exchange(prompt=turn.prompt, response=turn.response))
                history.session_hash = self._session_hash
                model_response = turn.response
                self._set_phase(ProtocolPhase.COMPLETED)
                return model_response
            else:
                raise ProtocolError(f'Unexpected message from server: {message.msg!r}')

    async def _receive(self, websocket: ClientConnection) -> ServerMessage:
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=self._config.read_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f'Backend read timeout after {self._config.read_timeout_seconds} seconds ({self._phase.value})')
            raise ProtocolTimeoutError(self._config.read_timeout_seconds, self._phase)

        try:
            return ServerMessage.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ProtocolError(f'Malformed message from server: {raw!r:.200}') from e

    async def _send(self, websocket: ClientConnection, payload: str):
        try:
            await websocket.send(payload)
        except ConnectionClosed as e:
            raise ProtocolError(f'Failed to send message to server: {e}') from e

    def _set_phase(self, phase: ProtocolPhase):
        logger.debug(f'Session {self._session_hash}: {self._phase.value} -> {phase.value}')
        self._phase = phase
