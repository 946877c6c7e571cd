from pathlib import Path
import contextlib
import logging

import aiofiles
import aiofiles.os
from pydantic import BaseModel, ValidationError


logger = logging.getLogger(__name__)


HISTORY_FILE_SUFFIX = '.soul'
TEMP_FILE_SUFFIX = '.tmp'


class Exchange(BaseModel):
    prompt: str
    response: str

    def as_turn(self) -> list[str]:
        return [self.prompt, self.response]


class ConversationHistory(BaseModel):
    """The exchanges of one conversation, oldest first, plus its retrieval settings."""

    exchanges: list[Exchange] = []
    rag_mode: bool = False
    rag_query: str = 'Current Events'
    rag_source: str = 'Google'
    session_hash: str | None = None
    """Correlation identifier of the client that last talked to the backend for this history."""

    def __len__(self) -> int:
        return len(self.exchanges)

    def append(self, exchange: Exchange):
        self.exchanges.append(exchange)

    def undo_last(self) -> Exchange | None:
        """Removes the most recent exchange.
        The first exchange is never removed.

        :return: The removed exchange, or None if nothing was removed.
        """
        if len(self.exchanges) <= 1:
            return None
        return self.exchanges.pop()

    def turns(self) -> list[list[str]]:
        return [exchange.as_turn() for exchange in self.exchanges]


class HistoryStoreError(Exception):
    def __init__(self, message: str):
        super().__init__(message)


class HistoryStore:
    """
    Conversation histories by key, persisted as one `<key>.soul` JSON file per key.
    Histories are cached in memory once loaded.
    """

    def __init__(self, directory: Path, rag_query: str = 'Current Events', rag_source: str = 'Google'):
        self._directory = Path(directory)
        self._rag_query = rag_query
        self._rag_source = rag_source
        self._histories: dict[str, ConversationHistory] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        return self._directory / f'{key}{HISTORY_FILE_SUFFIX}'

    def new_history(self) -> ConversationHistory:
        return ConversationHistory(rag_query=self._rag_query, rag_source=self._rag_source)

    async def get(self, key: str) -> ConversationHistory:
        """Returns the cached history for `key`, loading it from disk on first access."""
        history = self._histories.get(key)
        if history is None:
            history = await self.load(key)
        return history

    async def load(self, key: str) -> ConversationHistory:
        """Loads the history for `key` from disk, replacing the cached one.
        A missing, unreadable or invalid file yields an empty history.
        """

        path = self.path_for(key)
        history = self.new_history()

        try:
            # Raw bytes: bad UTF-8 is reported by the JSON validation like any other malformed content
            async with aiofiles.open(path, mode='rb') as f:
                content = await f.read()
            history = ConversationHistory.model_validate_json(content)
        except FileNotFoundError:
            logger.debug(f'No history file at {path}; starting empty')
        except OSError as e:
            logger.warning(f'Failed to load history from {path}: {e}')
        except ValidationError as e:
            logger.warning(f'History file {path} is invalid and was ignored: {e.error_count()} error(s)')
        except ValueError as e:
            logger.warning(f'History file {path} could not be decoded and was ignored: {e}')

        self._histories[key] = history
        return history

    async def save(self, key: str):
        """Writes the history for `key` to a temporary file, then moves it over the `.soul` file.
        A failed save leaves the previous file untouched.
        """

        history = await self.get(key)
        path = self.path_for(key)
        temp_path = path.with_name(f'{path.name}{TEMP_FILE_SUFFIX}')

        try:
            await aiofiles.os.makedirs(self._directory, exist_ok=True)
            async with aiofiles.open(temp_path, mode='w') as f:
                await f.write(history.model_dump_json(indent=2))
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            logger.error(f'Failed to save history to {path}: {e}')
            with contextlib.suppress(OSError):
                await aiofiles.os.remove(temp_path)
            raise HistoryStoreError(f'Failed to save history to {path}: {e}') from e

        logger.debug(f'Saved {len(history)} exchange(s) to {path}')

    async def list(self) -> list[str]:
        """Lists the keys of all persisted histories."""
        try:
            names = await aiofiles.os.listdir(self._directory)
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f'Failed to list history files in {self._directory}: {e}')
            return []

        return sorted(
            name[:-len(HISTORY_FILE_SUFFIX)] for name in names
            if name.endswith(HISTORY_FILE_SUFFIX)
        )

    async def delete(self, key: str) -> bool:
        """Deletes the persisted history for `key` and drops the cached one.

        :return: True if a file was removed, False if there was none.
        """

        self._histories.pop(key, None)
        path = self.path_for(key)

        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.info(f'History file {path} does not exist')
            return False
        except OSError as e:
            logger.error(f'Error deleting history file {path}: {e}')
            raise HistoryStoreError(f'Error deleting history file {path}: {e}') from e

        logger.info(f'History file {path} deleted')
        return True
