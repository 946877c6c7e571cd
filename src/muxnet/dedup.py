import logging


logger = logging.getLogger(__name__)


class Deduplicator:
    """
    Per-session, exact-text recency tracking of executed directives.

    A directive may run again in the same session once more than `window_seconds`
    have passed since it last ran. Timestamps are plain seconds (e.g., `time.monotonic()`).
    """

    def __init__(self, window_seconds: float = 60.0):
        self._window_seconds = window_seconds
        self._executed_at: dict[tuple[str, str], float] = {}

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def __len__(self) -> int:
        return len(self._executed_at)

    def may_execute(self, session: str, payload: str, now: float) -> bool:
        last_executed_at = self._executed_at.get((session, payload))
        if last_executed_at is None:
            return True
        return now - last_executed_at > self._window_seconds

    def record(self, session: str, payload: str, now: float):
        """Records a successful execution.
        Callers must only record after the directive was dispatched successfully,
        so a failed dispatch does not block a retry within the window.
        """
        self._executed_at[(session, payload)] = now

    def sweep(self, now: float) -> int:
        """Drops records that have aged out of the window.

        :return: The number of records dropped.
        """
        expired = [
            key for key, executed_at in self._executed_at.items()
            if now - executed_at > self._window_seconds
        ]
        for key in expired:
            del self._executed_at[key]

        if expired:
            logger.debug(f'Swept {len(expired)} expired directive record(s)')

        return len(expired)
