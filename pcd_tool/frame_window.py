"""
frame_window.py

Selection of a contiguous range of frames from a sensor capture.

Users give a start and an end bound on the command line:

=========  ==================  ==========================================
Syntax     Bound               Meaning
=========  ==================  ==========================================
``N``      ``FORWARD(N)``      N-th frame, 1-based
``-N``     ``BACKWARD(N)``     N-th frame counted from the end
``+N``     ``COUNT(N)``        N frames starting at the start bound
                               (end bound only)
=========  ==================  ==========================================

Bounds resolve against the capture's total frame count into a half-open,
0-based :class:`FrameWindow`.

A capture stores no frame index, so knowing the total frame count means
decoding the whole capture once.  Any ``BACKWARD`` bound therefore costs a
full extra pass over the file (see :func:`requires_full_scan`).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from pcd_tool.errors import FrameRangeError


class BoundKind(enum.Enum):
    FORWARD = "forward"
    BACKWARD = "backward"
    COUNT = "count"


@dataclass(frozen=True)
class FrameBound:
    """A start or end frame selector.

    Attributes:
        kind: How *n* is interpreted.
        n: Positive frame number or count.
    """

    kind: BoundKind
    n: int

    def __post_init__(self) -> None:
        if self.n < 1:
            raise ValueError(f"Frame bound must be >= 1, got {self.n}.")

    @classmethod
    def forward(cls, n: int) -> "FrameBound":
        return cls(BoundKind.FORWARD, n)

    @classmethod
    def backward(cls, n: int) -> "FrameBound":
        return cls(BoundKind.BACKWARD, n)

    @classmethod
    def count(cls, n: int) -> "FrameBound":
        return cls(BoundKind.COUNT, n)

    def __str__(self) -> str:
        prefix = {BoundKind.FORWARD: "", BoundKind.BACKWARD: "-", BoundKind.COUNT: "+"}[self.kind]
        return f"{prefix}{self.n}"


@dataclass(frozen=True)
class FrameWindow:
    """Half-open range ``[start, end)`` of 0-based frame indices."""

    start: int
    end: int

    def __contains__(self, index: object) -> bool:
        return isinstance(index, int) and self.start <= index < self.end

    def __len__(self) -> int:
        return self.end - self.start


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_positive(text: str, what: str) -> int:
    try:
        n = int(text)
    except ValueError:
        raise ValueError(f"Invalid {what} frame '{text}': expected an integer.") from None
    if n < 1:
        raise ValueError(f"Invalid {what} frame '{text}': zero is not allowed.")
    return n


def parse_start_frame(text: str) -> FrameBound:
    """Parse ``--start``: ``N`` (forward) or ``-N`` (backward)."""
    text = text.strip()
    if text.startswith("-"):
        return FrameBound.backward(_parse_positive(text[1:], "start"))
    if text.startswith("+"):
        raise ValueError(f"Invalid start frame '{text}': a relative count is only allowed for the end frame.")
    return FrameBound.forward(_parse_positive(text, "start"))


def parse_end_frame(text: str) -> FrameBound:
    """Parse ``--end``: ``N`` (forward), ``-N`` (backward) or ``+N`` (count)."""
    text = text.strip()
    if text.startswith("-"):
        return FrameBound.backward(_parse_positive(text[1:], "end"))
    if text.startswith("+"):
        return FrameBound.count(_parse_positive(text[1:], "end"))
    return FrameBound.forward(_parse_positive(text, "end"))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def requires_full_scan(start: Optional[FrameBound], end: Optional[FrameBound]) -> bool:
    """Return True if resolving the bounds needs the total frame count up front."""
    return any(b is not None and b.kind is BoundKind.BACKWARD for b in (start, end))


def resolve_start(start: Optional[FrameBound], total_frames: Optional[int]) -> int:
    """Resolve a start bound to a 0-based index.

    ``total_frames`` may be ``None`` for forward bounds.
    """
    if start is None:
        return 0
    if start.kind is BoundKind.FORWARD:
        return start.n - 1
    if start.kind is BoundKind.BACKWARD:
        if total_frames is None:
            raise ValueError("A backward start frame needs the total frame count.")
        if start.n > total_frames:
            raise FrameRangeError(
                f"Start frame -{start.n} exceeds the total number of frames ({total_frames})."
            )
        return total_frames - start.n
    raise ValueError("A relative count cannot be used as the start frame.")


def resolve_frame_window(
    start: Optional[FrameBound],
    end: Optional[FrameBound],
    total_frames: int,
) -> FrameWindow:
    """Resolve start/end bounds against a capture of *total_frames* frames.

    Missing bounds default to the first frame and one past the last frame.

    Raises:
        FrameRangeError: If a bound exceeds *total_frames* or the resolved
            window is empty.
    """
    start_index = resolve_start(start, total_frames)

    if end is None:
        end_index = total_frames
    elif end.n > total_frames:
        raise FrameRangeError(f"End frame {end} exceeds the total number of frames ({total_frames}).")
    elif end.kind is BoundKind.FORWARD:
        end_index = end.n
    elif end.kind is BoundKind.BACKWARD:
        end_index = total_frames + 1 - end.n
    else:
        # Validated against the total, not against the frames left after start.
        end_index = start_index + end.n

    if end_index <= start_index:
        raise FrameRangeError(
            f"Start frame must precede end frame (resolved window [{start_index}, {end_index}))."
        )
    return FrameWindow(start_index, end_index)


def resolve_open_end(start: Optional[FrameBound], end: Optional[FrameBound]) -> Optional[int]:
    """Exclusive end index computable without the total frame count.

    Returns ``None`` if the window runs to the end of the capture.  Only valid
    when :func:`requires_full_scan` is False.
    """
    if end is None:
        return None
    if end.kind is BoundKind.FORWARD:
        return end.n
    if end.kind is BoundKind.COUNT:
        return resolve_start(start, None) + end.n
    raise ValueError("A backward end frame needs the total frame count.")
