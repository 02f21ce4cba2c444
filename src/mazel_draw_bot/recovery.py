"""
Stuck-draw recovery.

Entered whenever a tick finds `is_draw_in_progress` set. Every decision is
re-derived from chain state:

    elapsed > timeout, no draw result    -> cancel_draw
    draw result present, not finalized    -> index + finalize (pure resume)
    no draw result, still within timeout  -> execute, then index + finalize

A draw that already has a draw result is never cancelled: its randomness
outcome is valid and must be settled.
"""
from __future__ import annotations

import logging
from typing import Any

from .accounts import ProgramState
from .alerts import log_phase, log_tx
from .draw_state import DrawContext, DrawPhase, DrawState
from .phases import execute_phase, index_and_finalize

log = logging.getLogger(__name__)


def should_cancel(elapsed: int, timeout: int) -> bool:
    return elapsed > timeout


def _log(draw: DrawState, status: str, **details: Any) -> None:
    log_phase(draw.program, draw.draw_id, "recovery", status, **details)


def recover(ctx: DrawContext, chain_state: ProgramState, draw: DrawState) -> DrawState:
    draw.recovered = True
    elapsed = ctx.now() - chain_state.commit_timestamp
    log.warning(
        "[%s] Draw #%d is stuck (in progress for %ds, timeout %ds)",
        draw.program,
        draw.draw_id,
        elapsed,
        ctx.timeout,
    )

    existing = ctx.retry.run(
        f"{draw.program}.fetch_draw_result",
        lambda: ctx.program.fetch_draw_result(draw.draw_id),
    )

    if existing is not None:
        if existing.is_explicitly_finalized:
            draw.skip_reason = "draw result already finalized"
            _log(draw, "skip", reason=draw.skip_reason)
            return draw
        _log(draw, "start", action="resume_index_finalize", elapsed=elapsed)
        draw.winning_numbers = existing.winning_numbers
        draw.advance(DrawPhase.EXECUTED)
        index_and_finalize(ctx, draw)
        return draw

    if should_cancel(elapsed, ctx.timeout):
        return _cancel(ctx, draw, elapsed)

    _log(draw, "start", action="resume_execute", elapsed=elapsed)
    draw.commit_slot = chain_state.commit_slot
    draw.randomness_account = chain_state.current_randomness_account
    if ctx.dry_run:
        log_phase(draw.program, draw.draw_id, "execute", "skip", reason="dry run")
        return draw
    execute_phase(ctx, draw)
    index_and_finalize(ctx, draw)
    return draw


def _cancel(ctx: DrawContext, draw: DrawState, elapsed: int) -> DrawState:
    reason = f"Bot: commit timed out after {elapsed}s"
    _log(draw, "start", action="cancel_draw", elapsed=elapsed)
    if ctx.dry_run:
        draw.skip_reason = "stuck draw, would cancel (dry run)"
        _log(draw, "skip", reason=draw.skip_reason)
        return draw

    receipt = ctx.retry.run(
        f"{draw.program}.cancel_draw", lambda: ctx.program.cancel_draw(reason)
    )
    draw.record_tx("cancel_draw", receipt.signature)
    draw.cancelled = True
    draw.phase = DrawPhase.IDLE
    log_tx(draw.program, "cancel_draw", receipt.signature)
    _log(draw, "success", action="cancel_draw", signature=receipt.signature)
    ctx.alerts.send(
        "warn",
        f"[{draw.program}] draw #{draw.draw_id} cancelled after commit timeout",
        {
            "elapsed_s": elapsed,
            "timeout_s": ctx.timeout,
            "signature": receipt.signature,
        },
    )
    return draw
