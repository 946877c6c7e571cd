import os
import sys

# Ensure src on path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from muxnet.ophanim.messages import LINE_BREAK
from muxnet.prompts import BASH_FENCE_OPENER, SYSTEM_PROMPT, build_prompt


def test_build_prompt_without_screen_context():
    prompt = build_prompt('list files')
    assert prompt.startswith(SYSTEM_PROMPT)
    assert prompt.endswith('User Prompt: list files\n\n' + BASH_FENCE_OPENER)
    assert 'Screen Context' not in prompt


def test_build_prompt_escapes_screen_context_line_breaks():
    prompt = build_prompt('fix it', '$ make\nerror')
    assert f'Screen Context:{LINE_BREAK}$ make{LINE_BREAK}error{LINE_BREAK}{LINE_BREAK}User Prompt: fix it' in prompt
