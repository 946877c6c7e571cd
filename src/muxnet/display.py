from collections.abc import Mapping
import asyncio
import logging

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text
import yaml

from .status import StatusBoard


logger = logging.getLogger(__name__)


def render_status(status: Mapping[str, str]) -> Group:
    """Renders a status map as the dashboard shown in interactive mode."""
    title = Text('MuxNet Status\n', style='bold yellow')

    if not status:
        return Group(title, Text('No active tmux sessions found. Waiting for sessions...', style='yellow'))

    table = Table(title='Active Sessions', title_style='green', title_justify='left', expand=True)
    table.add_column('Session', style='white', no_wrap=True)
    table.add_column('Last Prompt', style='white')
    for session, last_prompt in status.items():
        table.add_row(session, last_prompt)

    return Group(title, table)


def format_status(status: Mapping[str, str]) -> str:
    """Formats a status map as YAML for daemon-mode logging."""
    if not status:
        return 'No active sessions.'

    return yaml.dump([
        {
            'session': session,
            'lastPrompt': last_prompt,
        } for session, last_prompt in status.items()
    ], sort_keys=False, indent=2, allow_unicode=True)


class StatusDisplay:
    """
    Shows the status board: a live dashboard in interactive mode,
    log records in daemon mode.
    """

    def __init__(
        self,
        status_board: StatusBoard,
        daemon_mode: bool = False,
        refresh_seconds: float = 0.5,
        console: Console | None = None,
    ):
        self._status_board = status_board
        self._daemon_mode = daemon_mode
        self._refresh_seconds = refresh_seconds
        self._console = console or Console()

    async def run(self):
        if self._daemon_mode:
            await self._log_loop()
        else:
            await self._dashboard_loop()

    async def _dashboard_loop(self):
        status = await self._status_board.snapshot()
        with Live(render_status(status), console=self._console, refresh_per_second=4, screen=True) as live:
            while True:
                await asyncio.sleep(self._refresh_seconds)
                status = await self._status_board.snapshot()
                live.update(render_status(status))

    async def _log_loop(self):
        last_logged: Mapping[str, str] | None = None

        while True:
            status = await self._status_board.snapshot()

            # Only log when something changed; the board is republished every tick.
            if status and status != last_logged:
                logger.info(f'Session status:\n{format_status(status)}')
            last_logged = status

            await asyncio.sleep(self._refresh_seconds)
