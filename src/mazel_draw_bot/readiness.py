from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .accounts import ProgramState


@dataclass(frozen=True)
class NotReady:
    reason: str


@dataclass(frozen=True)
class ReadyToStart:
    draw_id: int


@dataclass(frozen=True)
class InProgress:
    """A draw is already in flight, possibly left behind by an earlier run."""

    draw_id: int


Readiness = Union[NotReady, ReadyToStart, InProgress]


def evaluate_readiness(
    state: ProgramState, now: int, ticket_sale_cutoff: int
) -> Readiness:
    """Pure decision over freshly fetched program state; no side effects."""
    if state.is_paused:
        return NotReady("program is paused")
    if not state.is_funded:
        return NotReady("program is not funded")
    if state.is_draw_in_progress:
        return InProgress(state.current_draw_id)

    opens_at = state.next_draw_timestamp - ticket_sale_cutoff
    if now < opens_at:
        return NotReady(
            f"draw not ready yet ({opens_at - now}s until cutoff, "
            f"{state.next_draw_timestamp - now}s until draw)"
        )
    return ReadyToStart(state.current_draw_id)
