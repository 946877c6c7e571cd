import asyncio
import logging


logger = logging.getLogger(__name__)


class TmuxError(Exception):
    def __init__(self, message: str):
        super().__init__(message)


class TmuxClient:
    """
    Async wrapper around the `tmux` command-line client.
    Every call spawns one `tmux` process and waits for it to exit.
    """

    def __init__(self, tmux_binary: str = 'tmux', command_timeout_seconds: float | None = 5.0):
        self._tmux_binary = tmux_binary
        self._command_timeout_seconds = command_timeout_seconds

    async def list_sessions(self) -> list[str]:
        """Lists the names of all tmux sessions.
        An absent tmux server (exit code 1) means there are no sessions.
        """

        returncode, stdout, stderr = await self._run('list-sessions', '-F', '#{session_name}')

        if returncode == 1:
            return []
        if returncode != 0:
            raise TmuxError(f'`tmux list-sessions` failed with exit code {returncode}: {stderr.strip()}')

        return [line for line in stdout.splitlines() if line.strip()]

    async def capture_pane(self, session: str) -> str:
        return await self._check('capture-pane', '-p', '-t', session)

    async def send_keys(self, session: str, keys: str, literal: bool = False, enter: bool = False):
        """Sends keys to the active pane of a session.

        :param keys: Key names (e.g. `C-c`), or plain text if `literal` is set.
        :param literal: Whether `keys` is sent as literal characters instead of key names.
        :param enter: Whether to press Enter afterwards.
        """

        args = ['send-keys', '-t', session]
        if literal:
            args.append('-l')
        await self._check(*args, keys)

        if enter:
            await self._check('send-keys', '-t', session, 'Enter')

    async def set_label(self, session: str, label: str):
        await self._check('set-option', '-t', session, 'status-left', label)

    async def show_message(self, session: str, text: str):
        """Shows an ephemeral message in the session's status line."""
        await self._check('display-message', '-t', session, text)

    async def _check(self, *args: str) -> str:
        returncode, stdout, stderr = await self._run(*args)
        if returncode != 0:
            raise TmuxError(f'`tmux {args[0]}` failed with exit code {returncode}: {stderr.strip()}')
        return stdout

    async def _run(self, *args: str) -> tuple[int, str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                self._tmux_binary, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TmuxError(f'Failed to run `{self._tmux_binary}`: {e}') from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._command_timeout_seconds)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f'`tmux {args[0]}` timeout after {self._command_timeout_seconds} seconds')
            raise TmuxError(f'`tmux {args[0]}` timeout after {self._command_timeout_seconds} seconds')

        return process.returncode, stdout.decode(errors='replace'), stderr.decode(errors='replace')
