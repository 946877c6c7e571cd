from typing import Callable
import logging
import time

from .dedup import Deduplicator
from .directives import (
    Directive,
    DirectiveKind,
    get_filtered_screen_content,
    get_last_non_empty_line,
    parse_directive,
)
from .ophanim.client import OphanimClient, OphanimError
from .ophanim.history import HistoryStore, HistoryStoreError
from .prompts import build_prompt
from .status import DELETED, ERROR, SKIPPED_PREFIX, StatusBoard
from .terminal.filters import filter_command_response
from .terminal.tmux import TmuxClient, TmuxError


logger = logging.getLogger(__name__)


PROCESSING_MESSAGE = 'Processing...'
NO_COMMANDS_MESSAGE = 'No commands returned'
INTERRUPT_KEY = 'C-c'


class SessionScanner:
    """
    Polls tmux sessions for directives and answers them in place.

    Each tick looks at the last non-blank line of every session;
    a directive found there is either skipped (seen recently),
    deleted (the `!` glyph) or sent to the backend,
    whose filtered answer is typed into the session.
    """

    def __init__(
        self,
        tmux: TmuxClient,
        client: OphanimClient,
        history_store: HistoryStore,
        deduplicator: Deduplicator,
        status_board: StatusBoard,
        session_name: str,
        continue_conversation: bool = False,
        watch_label: str = '👁️ ',
        clock: Callable[[], float] = time.monotonic,
    ):
        """Creates a SessionScanner object.

        :param session_name: Name of this muxnet run; prefixes the history key of every tmux session.
        :param continue_conversation: Whether prior exchanges are sent as context with each directive.
        :param watch_label: The status-left label set on sessions being watched.
        :param clock: Source of the timestamps used for deduplication.
        """

        self._tmux = tmux
        self._client = client
        self._history_store = history_store
        self._deduplicator = deduplicator
        self._status_board = status_board
        self._session_name = session_name
        self._continue_conversation = continue_conversation
        self._watch_label = watch_label
        self._clock = clock

        self._watched_sessions: set[str] = set()

    @property
    def watched_sessions(self) -> frozenset[str]:
        return frozenset(self._watched_sessions)

    def history_key(self, session: str) -> str:
        return f'{self._session_name}-{session}'

    async def scan_once(self) -> dict[str, str]:
        """Runs one scan tick over all tmux sessions.

        :return: The new status map, also published to the status board.
        """

        try:
            sessions = await self._tmux.list_sessions()
        except TmuxError as e:
            logger.warning(f'Error listing tmux sessions: {e}')
            sessions = []

        new_status: dict[str, str] = {}
        for session in sessions:
            try:
                status = await self._monitor_session(session)
            except Exception:
                logger.exception(f'Unexpected error while monitoring session {session}')
                status = ERROR
            if status is not None:
                new_status[session] = status

        self._deduplicator.sweep(self._clock())
        await self._status_board.publish(new_status)

        return new_status

    async def cleanup(self):
        """Removes the watch label from every session watched so far."""
        for session in sorted(self._watched_sessions):
            try:
                await self._tmux.set_label(session, '')
            except TmuxError as e:
                logger.warning(f'Error resetting label for session {session}: {e}')
        self._watched_sessions.clear()

    async def _monitor_session(self, session: str) -> str | None:
        await self._watch(session)

        try:
            content = await self._tmux.capture_pane(session)
        except TmuxError as e:
            logger.warning(f'Error capturing pane for session {session}: {e}')
            return None

        last_line = get_last_non_empty_line(content)
        if not last_line:
            return None

        directive = parse_directive(last_line)
        if directive is None:
            return None

        if directive.kind == DirectiveKind.DELETE:
            return await self._delete_history(session)

        now = self._clock()
        if not self._deduplicator.may_execute(session, directive.payload, now):
            return f'{SKIPPED_PREFIX}{directive.payload}'

        screen_content = get_filtered_screen_content(content) if directive.kind == DirectiveKind.SCREEN_CONTEXT else ''

        try:
            await self._take_over(session, directive, screen_content)
        except (OphanimError, TmuxError) as e:
            logger.error(f'Failed to answer directive {directive.payload!r} in session {session}: {e}')
            await self._report_error(session, e)
            return ERROR

        self._deduplicator.record(session, directive.payload, now)
        return directive.payload

    async def _watch(self, session: str):
        if session in self._watched_sessions:
            return

        try:
            await self._tmux.set_label(session, self._watch_label)
        except TmuxError as e:
            logger.warning(f'Error setting label for session {session}: {e}')

        self._watched_sessions.add(session)

    async def _delete_history(self, session: str) -> str:
        try:
            await self._history_store.delete(self.history_key(session))
        except HistoryStoreError:
            return ERROR
        return DELETED

    async def _take_over(self, session: str, directive: Directive, screen_content: str):
        await self._show_message(session, PROCESSING_MESSAGE)

        try:
            response = await self._round_trip(session, directive, screen_content)
            commands = filter_command_response(response)

            await self._tmux.send_keys(session, INTERRUPT_KEY)
            if commands:
                await self._tmux.send_keys(session, commands, literal=True, enter=True)
        finally:
            await self._show_message(session, '')

        if not commands:
            await self._show_message(session, NO_COMMANDS_MESSAGE)

    async def _round_trip(self, session: str, directive: Directive, screen_content: str) -> str:
        key = self.history_key(session)
        history = await self._history_store.get(key)
        history.rag_mode = directive.kind == DirectiveKind.RAG

        response = await self._client.prompt_chatbot(
            build_prompt(directive.payload, screen_content),
            history,
            continuation=self._continue_conversation and len(history) > 0,
        )

        try:
            await self._history_store.save(key)
        except HistoryStoreError:
            logger.warning(f'History for session {session} is kept in memory only')

        return response

    async def _report_error(self, session: str, error: Exception):
        # A shell comment shows the error in the pane without running anything
        comment = '# muxnet: ' + ' '.join(str(error).split())
        try:
            await self._tmux.send_keys(session, INTERRUPT_KEY)
            await self._tmux.send_keys(session, comment, literal=True, enter=True)
        except TmuxError as e:
            logger.warning(f'Error reporting failure to session {session}: {e}')

    async def _show_message(self, session: str, text: str):
        try:
            await self._tmux.show_message(session, text)
        except TmuxError as e:
            logger.debug(f'Error showing message in session {session}: {e}')
