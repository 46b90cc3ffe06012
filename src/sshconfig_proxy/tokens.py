"""
Percent-token expansion shared by config resolution and ProxyCommand.

OpenSSH expands ``%x`` sequences in several directives. Expansion here is a
single left-to-right pass:
- ``%%`` becomes a literal ``%`` and is not expanded again
- ``%x`` with a known ``x`` is replaced by its value
- any other ``%x`` (and a trailing lone ``%``) is left verbatim
"""
from __future__ import annotations

from typing import Mapping


def used_tokens(template: str) -> set[str]:
    """Return the token letters ``template`` would expand (``%%`` excluded)."""
    found: set[str] = set()
    i = 0
    while i < len(template) - 1:
        if template[i] != "%":
            i += 1
            continue
        if template[i + 1] != "%":
            found.add(template[i + 1])
        i += 2
    return found


def expand_tokens(template: str, tokens: Mapping[str, str]) -> str:
    """
    Expand ``%``-tokens in ``template``.

    Args:
        template: Text containing ``%x`` placeholders
        tokens: Map of token letter (without ``%``) to replacement text

    Returns:
        The expanded text
    """
    assert all(len(key) == 1 and key != "%" for key in tokens), (
        f"Token keys must be single characters other than '%', got {sorted(tokens)}"
    )

    out: list[str] = []
    i = 0
    length = len(template)
    while i < length:
        char = template[i]
        if char != "%" or i + 1 == length:
            out.append(char)
            i += 1
            continue

        token = template[i + 1]
        if token == "%":
            out.append("%")
        elif token in tokens:
            out.append(tokens[token])
        else:
            out.append(char + token)
        i += 2

    return "".join(out)
