"""Render groups as text: one line per group, members in input order."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fily.core.models import Group

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import TextIO

MEMBER_SEPARATOR = ", "


def order_groups(groups: Iterable[Group]) -> list[Group]:
    """Sort members by input position and groups by their first member.

    Groups are never merged or split here.
    """
    ordered = [Group.of(list(group.members)) for group in groups]
    ordered.sort(key=lambda g: g.first_index)
    return ordered


def format_group(group: Group, separator: str = MEMBER_SEPARATOR) -> str:
    """Format one group, e.g. ``a.txt, b.txt``."""
    return separator.join(str(handle.path) for handle in group.members)


def format_groups(groups: Iterable[Group], separator: str = MEMBER_SEPARATOR) -> list[str]:
    """Format groups into output lines, in emission order."""
    return [format_group(group, separator) for group in order_groups(groups)]


def write_groups(groups: Iterable[Group], stream: TextIO, separator: str = MEMBER_SEPARATOR) -> int:
    """Write one line per group to a stream.

    Returns:
        Number of lines written.
    """
    lines = format_groups(groups, separator)
    for line in lines:
        stream.write(line + "\n")
    return len(lines)
