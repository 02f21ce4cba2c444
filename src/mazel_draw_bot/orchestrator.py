"""
Draw lifecycle orchestrator: one run per game per scheduler tick.

Commit -> wait -> Execute -> Index -> Finalize, or the recovery path when
the chain reports a draw already in progress. Nothing survives the run:
the next tick starts again from freshly fetched chain state.
"""
from __future__ import annotations

import logging
from typing import Iterable, List

from .alerts import log_phase
from .draw_state import DrawContext, DrawPhase, DrawState
from .errors import DrawBotError
from .phases import commit_phase, execute_phase, index_and_finalize
from .readiness import InProgress, NotReady, evaluate_readiness
from .recovery import recover

log = logging.getLogger(__name__)


def run_lifecycle(ctx: DrawContext) -> DrawState:
    key = ctx.game.key
    try:
        chain_state = ctx.retry.run(f"{key}.fetch_state", ctx.program.fetch_state)
    except DrawBotError as e:
        draw = DrawState(program=key, draw_id=0)
        draw.fail("fetch_state", e)
        log.error("[%s] Could not read program state: %s", key, e)
        ctx.alerts.send(
            "error", f"[{key}] could not read program state", {"error": str(e)}
        )
        return draw

    draw = DrawState(program=key, draw_id=chain_state.current_draw_id)
    log.info(
        "[%s] Draw #%d: jackpot=%d tickets=%d in_progress=%s paused=%s next_draw=%d",
        key,
        chain_state.current_draw_id,
        chain_state.jackpot_balance,
        chain_state.current_draw_tickets,
        chain_state.is_draw_in_progress,
        chain_state.is_paused,
        chain_state.next_draw_timestamp,
    )

    decision = evaluate_readiness(chain_state, ctx.now(), ctx.cutoff)
    if isinstance(decision, NotReady):
        draw.skip_reason = decision.reason
        log.info("[%s] Not ready: %s", key, decision.reason)
        return draw

    try:
        if isinstance(decision, InProgress):
            return recover(ctx, chain_state, draw)
        _run_new_draw(ctx, draw)
    except DrawBotError as e:
        _fail(ctx, draw, _failing_phase(draw), e)
    return draw


def _run_new_draw(ctx: DrawContext, draw: DrawState) -> None:
    if ctx.dry_run:
        draw.skip_reason = "dry run"
        log_phase(draw.program, draw.draw_id, "commit", "skip", reason="dry run")
        return

    commit_phase(ctx, draw)

    log.info(
        "[%s] Waiting %.1fs for randomness reveal...",
        draw.program,
        ctx.commit_execute_delay_s,
    )
    ctx.sleep(ctx.commit_execute_delay_s)

    execute_phase(ctx, draw)
    index_and_finalize(ctx, draw)


_NEXT_PHASE = {
    DrawPhase.AWAITING_COMMIT: "commit",
    DrawPhase.COMMITTED: "execute",
    DrawPhase.EXECUTED: "index",
    DrawPhase.INDEXED: "finalize",
}


def _failing_phase(draw: DrawState) -> str:
    if draw.phase in _NEXT_PHASE:
        return _NEXT_PHASE[draw.phase]
    return "recovery" if draw.recovered else "commit"


def _fail(ctx: DrawContext, draw: DrawState, phase: str, error: BaseException) -> None:
    # On-chain state stays as the last successful phase left it; the next
    # tick resumes from there.
    draw.fail(phase, error)
    log_phase(
        draw.program, draw.draw_id, phase, "error", alerts=ctx.alerts, error=str(error)
    )


def run_tick(contexts: Iterable[DrawContext]) -> List[DrawState]:
    """Run each game's lifecycle in turn; one game's failure never stops the next."""
    return [run_lifecycle(ctx) for ctx in contexts]
