"""
The four draw phases. Each one is a single on-chain transaction (or, for
indexing, a read-only scan) wrapped in the retry executor.

A retry never re-submits a phase whose effect is already on chain: before
every re-submission the relevant account is fetched again and the attempt
is skipped if an earlier one landed despite a lost confirmation.
"""
from __future__ import annotations

import time
from typing import Callable, Optional, TypeVar

from .accounts import DrawResult
from .alerts import draw_complete_message, log_phase, log_tx
from .draw_state import DrawContext, DrawPhase, DrawState, PhaseOrderError
from .errors import AccountNotFoundError
from .indexer import generate_nonce, index_draw, plausibility_check
from .program import CommitResult, TxReceipt

T = TypeVar("T")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _submit_once(
    ctx: DrawContext,
    draw: DrawState,
    phase: str,
    submit: Callable[[], T],
    landed: Callable[[], Optional[T]],
) -> T:
    attempts = [0]

    def attempt() -> T:
        if attempts[0] > 0:
            prior = landed()
            if prior is not None:
                log_phase(
                    draw.program, draw.draw_id, phase, "skip", reason="already on chain"
                )
                return prior
        attempts[0] += 1
        return submit()

    def on_retry(n: int, error: BaseException) -> None:
        log_phase(
            draw.program, draw.draw_id, phase, "retry", attempt=n, error=str(error)
        )

    return ctx.retry.run(f"{draw.program}.{phase}", attempt, on_retry=on_retry)


def commit_phase(ctx: DrawContext, draw: DrawState) -> None:
    draw.advance(DrawPhase.AWAITING_COMMIT)
    log_phase(draw.program, draw.draw_id, "commit", "start")
    start = time.monotonic()

    def landed() -> Optional[CommitResult]:
        state = ctx.program.fetch_state()
        if state.is_draw_in_progress and state.current_draw_id == draw.draw_id:
            account = state.current_randomness_account or ""
            return CommitResult("", account, state.commit_slot)
        return None

    result = _submit_once(ctx, draw, "commit", ctx.program.commit_randomness, landed)
    draw.commit_slot = result.commit_slot
    draw.randomness_account = result.randomness_account
    draw.record_tx("commit_randomness", result.signature)
    draw.advance(DrawPhase.COMMITTED)
    if result.signature:
        log_tx(draw.program, "commit_randomness", result.signature, _elapsed_ms(start))
    log_phase(
        draw.program,
        draw.draw_id,
        "commit",
        "success",
        randomness_account=result.randomness_account,
        commit_slot=result.commit_slot,
    )


def execute_phase(ctx: DrawContext, draw: DrawState) -> DrawResult:
    if draw.phase != DrawPhase.COMMITTED:
        draw.advance(DrawPhase.COMMITTED)
    if not draw.randomness_account:
        raise AccountNotFoundError(
            f"[{draw.program}] draw #{draw.draw_id} has no randomness account recorded"
        )
    log_phase(
        draw.program,
        draw.draw_id,
        "execute",
        "start",
        randomness_account=draw.randomness_account,
    )
    start = time.monotonic()

    def landed() -> Optional[TxReceipt]:
        if ctx.program.fetch_draw_result(draw.draw_id) is not None:
            return TxReceipt("execute_draw", "")
        return None

    receipt = _submit_once(
        ctx,
        draw,
        "execute",
        lambda: ctx.program.execute_draw(draw.draw_id, draw.randomness_account),
        landed,
    )
    draw.record_tx("execute_draw", receipt.signature)

    result = ctx.retry.run(
        f"{draw.program}.fetch_draw_result",
        lambda: ctx.program.fetch_draw_result(draw.draw_id),
    )
    if result is None:
        raise AccountNotFoundError(
            f"[{draw.program}] draw #{draw.draw_id}: "
            "execute_draw confirmed but no draw result exists"
        )
    draw.winning_numbers = result.winning_numbers
    draw.advance(DrawPhase.EXECUTED)
    if receipt.signature:
        log_tx(draw.program, "execute_draw", receipt.signature, _elapsed_ms(start))
    log_phase(
        draw.program,
        draw.draw_id,
        "execute",
        "success",
        winning_numbers=list(result.winning_numbers),
        was_rolldown=result.was_rolldown,
        total_tickets=result.total_tickets,
    )
    return result


def index_phase(ctx: DrawContext, draw: DrawState) -> None:
    """Scan tickets with a nonce chosen once here and carried to finalize."""
    log_phase(draw.program, draw.draw_id, "index", "start")
    nonce = generate_nonce(ctx.nonce_seed)
    result = ctx.retry.run(
        f"{draw.program}.index",
        lambda: index_draw(
            ctx.game, ctx.program, draw.draw_id, draw.winning_numbers or (), nonce
        ),
    )
    draw.index_result = result
    draw.advance(DrawPhase.INDEXED)
    log_phase(
        draw.program,
        draw.draw_id,
        "index",
        "success",
        total_tickets=result.total_tickets_scanned,
        winner_counts=result.winner_counts.as_dict(),
        verification_hash=result.verification_hash_hex,
        duration_ms=result.duration_ms,
    )

    report = plausibility_check(
        ctx.game, result.winner_counts, result.total_tickets_scanned
    )
    draw.plausibility = report
    if not report.ok:
        ctx.alerts.send(
            "warn",
            f"[{draw.program}] draw #{draw.draw_id}: unusual winner distribution",
            {
                "warnings": "; ".join(report.warnings),
                "total_tickets": result.total_tickets_scanned,
                "winner_counts": result.winner_counts.as_dict(),
            },
        )


def finalize_phase(ctx: DrawContext, draw: DrawState) -> None:
    result = draw.index_result
    if result is None or draw.phase != DrawPhase.INDEXED:
        raise PhaseOrderError(
            f"[{draw.program}] draw #{draw.draw_id}: "
            f"cannot finalize from {draw.phase.value}"
        )
    log_phase(draw.program, draw.draw_id, "finalize", "start", nonce=result.nonce)
    start = time.monotonic()

    def landed() -> Optional[TxReceipt]:
        # A zero-winner Main draw has no prize to mark it, but finalize
        # always closes the draw on the program state.
        state = ctx.program.fetch_state()
        if not state.is_draw_in_progress or state.current_draw_id != draw.draw_id:
            return TxReceipt("finalize_draw", "")
        existing = ctx.program.fetch_draw_result(draw.draw_id)
        if existing is not None and existing.is_explicitly_finalized:
            return TxReceipt("finalize_draw", "")
        return None

    receipt = _submit_once(
        ctx,
        draw,
        "finalize",
        lambda: ctx.program.finalize_draw(
            draw.draw_id,
            result.winner_counts.counts,
            result.verification_hash,
            result.nonce,
        ),
        landed,
    )
    draw.record_tx("finalize_draw", receipt.signature)
    draw.advance(DrawPhase.FINALIZED)
    if receipt.signature:
        log_tx(draw.program, "finalize_draw", receipt.signature, _elapsed_ms(start))
    log_phase(
        draw.program,
        draw.draw_id,
        "finalize",
        "success",
        winner_counts=result.winner_counts.as_dict(),
        verification_hash=result.verification_hash_hex,
    )
    ctx.alerts.send(
        "info",
        draw_complete_message(
            ctx.game.label,
            draw.draw_id,
            result.winning_numbers,
            result.total_tickets_scanned,
            result.winner_counts.as_dict(),
        ),
    )


def index_and_finalize(ctx: DrawContext, draw: DrawState) -> None:
    if ctx.dry_run:
        log_phase(draw.program, draw.draw_id, "index", "skip", reason="dry run")
        return
    index_phase(ctx, draw)
    finalize_phase(ctx, draw)
