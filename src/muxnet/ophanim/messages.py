"""
Messages exchanged with the Ophanim backend.

The backend is a job queue: the client joins with its session hash,
submits the request once the server asks for it,
and receives the generated text in the completion message.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

from .history import ConversationHistory


JOIN_FN_INDEX = 4
CHAT_FN_INDEX = 6

_STRIPPED_CHARACTERS = ('\n', '\r', '\x00', '\x1a', "'", '"')

LINE_BREAK = '\\n'
"""Escaped line break for prompt text; kept by sanitization and sent as a real line break."""


class ServerMessage(BaseModel):
    model_config = ConfigDict(extra='allow')

    msg: str
    output: dict[str, Any] | None = None
    success: bool | None = None


class JoinMessage(BaseModel):
    fn_index: int = JOIN_FN_INDEX
    session_hash: str


class ChatMessage(BaseModel):
    data: list[Any]
    event_data: None = None
    fn_index: int = CHAT_FN_INDEX
    session_hash: str


class CompletedTurn(BaseModel):
    prompt: str
    response: str


# Control messages that need no action from the client
PASSIVE_MESSAGE_TYPES: set[str] = {'estimation', 'process_starts', 'process_generating', 'heartbeat'}


def sanitize_prompt(user_input: str) -> str:
    """Removes raw line breaks, NUL, SUB and quote characters from a prompt.
    Escaped line breaks (`LINE_BREAK`) are left in place.
    """
    for character in _STRIPPED_CHARACTERS:
        user_input = user_input.replace(character, '')
    return user_input.strip()


def construct_client_message(
    user_input: str,
    history: ConversationHistory,
    session_hash: str,
    continuation: bool = False,
) -> ChatMessage:
    """Builds the request submitted once the server sends `send_data`.

    :param user_input: The prompt.
    :param history: The conversation the prompt belongs to; supplies the retrieval settings
    and, for a continuation, the prior turns.
    :param session_hash: The client's correlation identifier.
    :param continuation: Whether prior exchanges are sent along as context.
    """

    prompt = sanitize_prompt(user_input).replace(LINE_BREAK, '\n')

    if continuation:
        assert len(history) > 0, "Continuation requested but the conversation history is empty"
        turns = history.turns() + [[prompt, '']]
    else:
        turns = [[prompt, '']]

    return ChatMessage(
        data=['', history.rag_query, history.rag_source, None, turns, history.rag_mode],
        session_hash=session_hash,
    )


def extract_completed_turn(message: ServerMessage) -> CompletedTurn | None:
    """Extracts the newest turn from a `process_completed` message.

    The chatbot turn list is the first element of `output.data`;
    its last element is `[prompt_echo, generated_text]`.

    :return: The turn, or None if the message does not carry one.
    """

    if not message.output:
        return None

    data = message.output.get('data')
    if not isinstance(data, list) or not data or not isinstance(data[0], list) or not data[0]:
        return None

    last_turn = data[0][-1]
    if not isinstance(last_turn, list) or len(last_turn) != 2:
        return None

    prompt, response = last_turn
    if not isinstance(response, str):
        return None

    return CompletedTurn(prompt=prompt if isinstance(prompt, str) else '', response=response)
