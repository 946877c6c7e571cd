from collections.abc import Mapping
from types import MappingProxyType

from aiorwlock import RWLock


SKIPPED_PREFIX = 'skipped: '
DELETED = 'deleted'
ERROR = 'error'


class StatusBoard:
    """
    The status of every session seen in the latest scan tick.

    The map is replaced wholesale on every tick and handed out read-only,
    so readers never observe a half-built map.
    """

    def __init__(self):
        self._status: Mapping[str, str] = MappingProxyType({})
        # Guards the reference swap only; published maps are immutable.
        self._lock = RWLock()

    async def publish(self, status: Mapping[str, str]):
        frozen = MappingProxyType(dict(status))
        async with self._lock.writer:
            self._status = frozen

    async def snapshot(self) -> Mapping[str, str]:
        async with self._lock.reader:
            return self._status

