from .ophanim.messages import LINE_BREAK


SYSTEM_PROMPT = \
"""System Prompt: Provide the system commands necessary to achieve the user's goal stated below. Assume the user is on linux and provide ONLY the commands.
 NO explanations.
No sudo
."""

BASH_FENCE_OPENER = "'''bash\n"


def build_prompt(user_prompt: str, screen_content: str = '') -> str:
    """Wraps a directive payload in the command-generation instructions.

    :param user_prompt: The directive payload.
    :param screen_content: Pane text sent along as context, if any.
    """

    if screen_content:
        context = LINE_BREAK.join(screen_content.splitlines())
        body = f'Screen Context:{LINE_BREAK}{context}{LINE_BREAK}{LINE_BREAK}User Prompt: {user_prompt}'
    else:
        body = f'User Prompt: {user_prompt}'

    return f'{SYSTEM_PROMPT}{body}\n\n{BASH_FENCE_OPENER}'
