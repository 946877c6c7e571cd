import os
import stat
import sys
import pytest

# Ensure src on path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from muxnet.terminal.tmux import TmuxClient, TmuxError


def _fake_tmux(tmp_path, body: str):
    """Writes an executable standing in for tmux; every invocation's arguments are appended to calls.log."""
    script = tmp_path / 'tmux'
    script.write_text(
        '#!/bin/sh\n'
        f'printf "%s\\n" "$*" >> "{tmp_path}/calls.log"\n'
        f'{body}\n'
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


def _calls(tmp_path) -> list[str]:
    return (tmp_path / 'calls.log').read_text().splitlines()


@pytest.mark.asyncio
async def test_list_sessions(tmp_path):
    client = TmuxClient(tmux_binary=_fake_tmux(tmp_path, 'printf "work\\nplay\\n"'))
    assert await client.list_sessions() == ['work', 'play']
    assert _calls(tmp_path) == ['list-sessions -F #{session_name}']


@pytest.mark.asyncio
async def test_list_sessions_without_server(tmp_path):
    client = TmuxClient(tmux_binary=_fake_tmux(tmp_path, 'echo "no server running" >&2; exit 1'))
    assert await client.list_sessions() == []


@pytest.mark.asyncio
async def test_list_sessions_failure(tmp_path):
    client = TmuxClient(tmux_binary=_fake_tmux(tmp_path, 'echo "boom" >&2; exit 2'))
    with pytest.raises(TmuxError, match='boom'):
        await client.list_sessions()


@pytest.mark.asyncio
async def test_capture_pane(tmp_path):
    client = TmuxClient(tmux_binary=_fake_tmux(tmp_path, 'printf "$ ls\\n#$ list files .\\n"'))
    assert await client.capture_pane('work') == '$ ls\n#$ list files .\n'
    assert _calls(tmp_path) == ['capture-pane -p -t work']


@pytest.mark.asyncio
async def test_send_keys_and_labels(tmp_path):
    client = TmuxClient(tmux_binary=_fake_tmux(tmp_path, 'exit 0'))

    await client.send_keys('work', 'C-c')
    await client.send_keys('work', 'ls -la', literal=True, enter=True)
    await client.set_label('work', 'watching')
    await client.show_message('work', 'Processing...')

    assert _calls(tmp_path) == [
        'send-keys -t work C-c',
        'send-keys -t work -l ls -la',
        'send-keys -t work Enter',
        'set-option -t work status-left watching',
        'display-message -t work Processing...',
    ]


@pytest.mark.asyncio
async def test_command_failure(tmp_path):
    client = TmuxClient(tmux_binary=_fake_tmux(tmp_path, "echo \"can't find session: nope\" >&2; exit 1"))
    with pytest.raises(TmuxError, match="can't find session"):
        await client.capture_pane('nope')


@pytest.mark.asyncio
async def test_command_timeout(tmp_path):
    client = TmuxClient(tmux_binary=_fake_tmux(tmp_path, 'sleep 5'), command_timeout_seconds=0.2)
    with pytest.raises(TmuxError, match='timeout'):
        await client.capture_pane('work')


@pytest.mark.asyncio
async def test_missing_binary(tmp_path):
    client = TmuxClient(tmux_binary=str(tmp_path / 'does-not-exist'))
    with pytest.raises(TmuxError):
        await client.list_sessions()
