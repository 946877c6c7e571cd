import re


# A command name followed by whitespace or the end of the line;
# prose like "Explanation:" or "Note," fails the test.
COMMAND_LINE_PATTERN = re.compile(r'^\s*[\w-]+(?:\s|$)')


def filter_command_response(response: str) -> str:
    """Keeps only the lines of a backend response that look like commands.

    :param response: The raw generated text.
    :return: The surviving lines joined with newlines; empty if none survive.
    """

    return '\n'.join(
        line for line in response.splitlines()
        if COMMAND_LINE_PATTERN.match(line)
    )
