"""
batu.agent.reducers

Reducers for the agent turn state.

Nodes return only what they add (`{"chunks": [chunk]}`); the reducer does the
concatenation so a node never has to copy the whole list.
"""

from __future__ import annotations

from typing import Any


def append_items(left: list[Any] | None, right: list[Any] | None) -> list[Any]:
    if not left:
        return list(right or [])
    if not right:
        return list(left)
    return [*left, *right]
