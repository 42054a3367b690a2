"""Terminal confirmation helper for the installer."""

from __future__ import annotations

from collections.abc import Callable

_AFFIRMATIVE = frozenset({"y", "yes"})


def prompt_yes_no(question: str, *, input_func: Callable[[str], str] | None = None) -> bool:
    """Ask ``question`` and return True only for an explicit yes.

    End of input (Ctrl-D) counts as no.
    """
    read = input_func if input_func is not None else input
    try:
        answer = read(f"{question} ")
    except EOFError:
        return False
    return str(answer or "").strip().lower() in _AFFIRMATIVE


__all__ = ["prompt_yes_no"]
