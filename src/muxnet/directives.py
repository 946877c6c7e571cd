from enum import Enum
import re

from pydantic import BaseModel


class DirectiveKind(Enum):
    PLAIN = '$'
    RAG = '@'
    """Retrieval-augmented; the backend consults its search source first."""
    SCREEN_CONTEXT = '%'
    """The captured pane text is sent along as context."""
    DELETE = '!'
    """Deletes the session's conversation history; never reaches the backend."""

    @property
    def marker(self) -> str:
        return f'#{self.value}'


# The greedy prefix makes the last marker on the line win.
DIRECTIVE_PATTERN = re.compile(r'.*#([$@%!])\s*(.+?)\s*\.')


class Directive(BaseModel):
    kind: DirectiveKind
    payload: str


def parse_directive(line: str) -> Directive | None:
    """Parses a directive out of a line of terminal output.

    :param line: The line to parse.
    :return: The directive, or None if the line does not carry one.
    """

    match = DIRECTIVE_PATTERN.match(line)
    if match is None:
        return None

    glyph, payload = match.groups()
    return Directive(kind=DirectiveKind(glyph), payload=payload)


def get_last_non_empty_line(content: str) -> str:
    """Returns the last line of `content` that is not blank, stripped; empty string if there is none."""
    last_line = ''
    for line in content.splitlines():
        line = line.strip()
        if line:
            last_line = line
    return last_line


def get_filtered_screen_content(content: str) -> str:
    """Returns the pane text with every line carrying a directive marker removed."""
    markers = [kind.marker for kind in DirectiveKind]
    return '\n'.join(
        line for line in content.splitlines()
        if not any(marker in line for marker in markers)
    )
