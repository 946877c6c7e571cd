from contextlib import asynccontextmanager
import asyncio
import logging
import signal

from .config import MuxnetConfig
from .dedup import Deduplicator
from .display import StatusDisplay
from .ophanim.client import OphanimClient
from .ophanim.history import HistoryStore
from .scanner import SessionScanner
from .status import StatusBoard
from .terminal.tmux import TmuxClient


logger = logging.getLogger(__name__)


class Muxnet:

    def __init__(self, config: MuxnetConfig):
        """Wires up the scanner, its collaborators and the status display.
        Must be called with a running event loop.
        """

        self._config = config

        self.status_board = StatusBoard()
        self.history_store = HistoryStore(
            config.ophanim.history_dir,
            rag_query=config.ophanim.rag_query,
            rag_source=config.ophanim.rag_source,
        )
        self.scanner = SessionScanner(
            tmux=TmuxClient(command_timeout_seconds=config.tmux_command_timeout_seconds),
            client=OphanimClient(config.ophanim),
            history_store=self.history_store,
            deduplicator=Deduplicator(window_seconds=config.dedup_window_seconds),
            status_board=self.status_board,
            session_name=config.session_name,
            continue_conversation=config.continue_conversation,
            watch_label=config.watch_label,
        )
        self.display = StatusDisplay(
            self.status_board,
            daemon_mode=config.daemon_mode,
            refresh_seconds=config.display_refresh_seconds,
        )

        self._shutdown_event = asyncio.Event()

    async def scan_loop(self):
        while True:
            try:
                await self.scanner.scan_once()
            except Exception:
                logger.exception('Scan tick failed; retrying on the next tick')

            await asyncio.sleep(self._config.response_delay_seconds)

    def request_shutdown(self, signum: int | None = None):
        if signum is not None:
            logger.info(f'Received signal: {signal.Signals(signum).name}')

            if signum == signal.SIGHUP and self._config.daemon_mode:
                logger.info('Ignoring SIGHUP in daemon mode')
                return

        logger.info('Shutting down...')
        self._shutdown_event.set()

    async def run(self):
        """Runs until a shutdown is requested, then resets the labels of watched sessions."""

        if self._config.daemon_mode:
            logger.info(f'Starting MuxNet in daemon mode (session {self._config.session_name})')

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
            loop.add_signal_handler(signum, self.request_shutdown, signum)

        try:
            async with self._background_tasks():
                await self._shutdown_event.wait()
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
                loop.remove_signal_handler(signum)
            await self.scanner.cleanup()

    @asynccontextmanager
    async def _background_tasks(self):
        tasks = [
            asyncio.create_task(self.scan_loop(), name='muxnet-scan'),
            asyncio.create_task(self.display.run(), name='muxnet-display'),
        ]

        def on_task_done(task: asyncio.Task):
            # Either task ending on its own is fatal to the run
            if not task.cancelled() and task.exception() is not None:
                logger.error(f'Task {task.get_name()} failed', exc_info=task.exception())
                self._shutdown_event.set()

        for task in tasks:
            task.add_done_callback(on_task_done)

        try:
            yield tasks
        finally:
            # Cancelling the scan task closes any open backend channel;
            # an in-flight exchange is dropped without being persisted.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
