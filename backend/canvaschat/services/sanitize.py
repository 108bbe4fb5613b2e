import re

MAX_MESSAGE_LENGTH = 2000
MAX_PROMPT_LENGTH = 1000

_ANGLE_BRACKETS = re.compile(r"[<>]")


def sanitize_user_input(text: str) -> str:
    """Trim, cap at MAX_MESSAGE_LENGTH and drop angle brackets."""
    return _ANGLE_BRACKETS.sub("", text.strip()[:MAX_MESSAGE_LENGTH])
