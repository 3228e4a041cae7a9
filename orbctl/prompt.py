"""Interactive questions asked on the terminal."""

from __future__ import annotations

import getpass

_YES = frozenset({"y", "yes"})
_NO = frozenset({"n", "no"})


def read_secret_string_from_user(message: str) -> str:
    """Ask for a value without echoing what the user types."""
    return getpass.getpass(f"? {message} ")


def read_string_from_user(message: str, default_value: str) -> str:
    """Ask for a value, returning ``default_value`` when the answer is empty."""
    question = f"? {message} "
    if default_value:
        question = f"? {message} ({default_value}) "
    answer = input(question)
    if answer == "" and default_value:
        return default_value
    return answer


def ask_user_to_confirm(message: str) -> bool:
    """Ask a yes/no question; an empty answer or a closed input means no."""
    while True:
        try:
            answer = input(f"? {message} (y/N) ")
        except (EOFError, KeyboardInterrupt):
            return False
        reply = answer.strip().lower()
        if reply == "":
            return False
        if reply in _YES:
            return True
        if reply in _NO:
            return False