from datetime import datetime
from pathlib import Path
import hashlib
import os

from pydantic import BaseModel, Field


def generate_session_name() -> str:
    """Returns a fresh session name (MD5 hex digest of the current time)."""
    return hashlib.md5(str(datetime.now()).encode()).hexdigest()


def lookup_env_or_default(key: str, default: str) -> str:
    value = os.environ.get(key)
    return value if value is not None else default


class OphanimConfig(BaseModel):
    host: str = 'ophanim.azai.run'
    port: int = 443
    proto: str = 'wss'
    """Transport scheme of the backend channel (`ws` or `wss`)."""

    history_dir: Path = Path.home() / '.config' / 'ophanim'
    """Directory holding one `.soul` file per conversation history."""

    rag_query: str = 'Current Events'
    rag_source: str = 'Google'

    read_timeout_seconds: float | None = 120.0
    """Upper bound for every read on the backend channel.
    If None, a wedged backend stalls the call indefinitely (this is not recommended)."""

    open_timeout_seconds: float | None = 10.0
    """Timeout for opening the backend channel, including the WebSocket handshake."""

    @property
    def url(self) -> str:
        return f'{self.proto}://{self.host}:{self.port}/queue/join'

    @classmethod
    def from_env(cls, **overrides) -> 'OphanimConfig':
        """Builds a config from `OPHANIM_*` environment variables.

        :param overrides: Field values taking precedence over the environment.
        """

        defaults = cls()
        values = {
            'host': lookup_env_or_default('OPHANIM_HOST', defaults.host),
            'port': lookup_env_or_default('OPHANIM_PORT', str(defaults.port)),
            'proto': lookup_env_or_default('OPHANIM_PROTO', defaults.proto),
            'history_dir': Path(lookup_env_or_default('OPHANIM_HISTORY_DIR', str(defaults.history_dir))).expanduser(),
        }
        values.update(overrides)
        return cls(**values)


class MuxnetConfig(BaseModel):
    session_name: str = Field(default_factory=generate_session_name)
    """Name of this muxnet run; prefixes the history key of every tmux session."""

    response_delay_seconds: float = 2.0
    """Delay between two scan ticks."""

    dedup_window_seconds: float = 60.0
    """A directive repeated in the same session within this window is skipped."""

    daemon_mode: bool = False
    continue_conversation: bool = False
    """Whether prior exchanges of a session are sent as context with each new directive."""

    watch_label: str = '👁️ '
    """tmux status-left label set on every watched session."""

    tmux_command_timeout_seconds: float | None = 5.0
    display_refresh_seconds: float = 0.5

    ophanim: OphanimConfig = Field(default_factory=OphanimConfig.from_env)
