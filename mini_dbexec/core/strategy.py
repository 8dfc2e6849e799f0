"""Execution strategy selection from backend capabilities and caller intent."""

from __future__ import annotations

from enum import Enum

from .capabilities import Capabilities


class Strategy(str, Enum):
    """How a command is executed and its rows are delivered."""

    STREAMING = "streaming"
    BUFFERED_SINGLE = "buffered_single"
    BUFFERED_MULTI = "buffered_multi"


class ResultShape(str, Enum):
    """Result shape requested by the caller."""

    SEQUENTIAL = "sequential"
    SINGLE = "single"
    MULTIPLE = "multiple"


def select_strategy(
    capabilities: Capabilities,
    requires_cursor: bool,
    shape: ResultShape,
) -> Strategy:
    """Pick the execution strategy for one command.

    Capability dominates intent: a backend that cannot stream never gets
    `STREAMING`. Cursor-shaped commands are always drained as buffered tables.
    """

    if requires_cursor:
        return Strategy.BUFFERED_MULTI
    if shape is ResultShape.SEQUENTIAL and capabilities.supports_streaming:
        return Strategy.STREAMING
    if shape is ResultShape.MULTIPLE:
        return Strategy.BUFFERED_MULTI
    return Strategy.BUFFERED_SINGLE
