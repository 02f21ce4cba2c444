from dataclasses import replace

import pytest

from mazel_draw_bot.draw_state import DrawPhase, DrawState, PhaseOrderError
from mazel_draw_bot.errors import RpcError, TransactionError
from mazel_draw_bot.games import MAIN, QUICK_PICK
from mazel_draw_bot.indexer import compute_verification_hash
from mazel_draw_bot.orchestrator import run_lifecycle, run_tick
from mazel_draw_bot.phases import finalize_phase

from conftest import NOW, FakeProgram, make_state, ticket

ORDER = ["commit", "execute", "fetch_tickets", "finalize"]


def test_full_lifecycle(make_ctx, alerts, main_tickets):
    program = FakeProgram(MAIN, make_state(), tickets=main_tickets)
    ctx = make_ctx(program, commit_execute_delay_s=4.0)

    draw = run_lifecycle(ctx)

    assert draw.phase == DrawPhase.FINALIZED
    assert program.lifecycle_calls() == ORDER
    assert ctx.sleeps == [4.0]
    assert draw.randomness_account is not None
    counts, digest, nonce = program.finalized_with
    assert counts == (1, 1, 0, 1, 0)
    assert nonce == 99
    winner_counts = draw.index_result.winner_counts
    assert digest == compute_verification_hash(7, (1, 2, 3, 4, 5, 6), winner_counts, 99)
    assert "info" in alerts.levels()
    assert program.state.current_draw_id == 8


def test_quick_pick_lifecycle(make_ctx):
    program = FakeProgram(
        QUICK_PICK,
        make_state(next_draw_timestamp=NOW + 100),
        tickets=[ticket([1, 2, 3, 4, 5]), ticket([1, 2, 3, 30, 31])],
        winning=(1, 2, 3, 4, 5),
    )
    draw = run_lifecycle(make_ctx(program))
    assert draw.phase == DrawPhase.FINALIZED
    assert program.finalized_with[0] == (1, 0, 1)


def test_not_ready_does_nothing(make_ctx):
    program = FakeProgram(MAIN, make_state(next_draw_timestamp=NOW + 7200))
    draw = run_lifecycle(make_ctx(program))
    assert draw.phase == DrawPhase.IDLE
    assert "until cutoff" in draw.skip_reason
    assert program.calls == []


def test_dry_run_sends_nothing(make_ctx):
    program = FakeProgram(MAIN, make_state())
    draw = run_lifecycle(make_ctx(program, dry_run=True))
    assert draw.phase == DrawPhase.IDLE
    assert draw.skip_reason == "dry run"
    assert program.calls == []


def test_commit_failure_marks_error_and_alerts(make_ctx, alerts):
    program = FakeProgram(MAIN, make_state())
    program.fail("commit", *[TransactionError("commit", "rejected")] * 3)

    draw = run_lifecycle(make_ctx(program))

    assert draw.phase == DrawPhase.ERROR
    assert draw.failed_phase == "commit"
    assert program.lifecycle_calls() == ["commit", "commit", "commit"]
    assert "error" in alerts.levels()


@pytest.mark.parametrize("failing", ["commit", "execute", "finalize"])
def test_phase_order_is_never_violated(make_ctx, main_tickets, failing):
    program = FakeProgram(MAIN, make_state(), tickets=main_tickets)
    program.fail(failing, *[RpcError("boom")] * 10)

    draw = run_lifecycle(make_ctx(program))

    assert draw.phase == DrawPhase.ERROR
    seen = []
    for call in program.lifecycle_calls():
        if not seen or seen[-1] != call:
            seen.append(call)
    assert seen == ORDER[: len(seen)]
    assert seen[-1] == failing


def test_lost_commit_confirmation_is_not_resubmitted(make_ctx, main_tickets):
    program = FakeProgram(MAIN, make_state(), tickets=main_tickets)
    program.lose_confirmation("commit")

    draw = run_lifecycle(make_ctx(program))

    assert draw.phase == DrawPhase.FINALIZED
    assert program.lifecycle_calls().count("commit") == 1


def test_lost_finalize_confirmation_is_not_resubmitted(make_ctx, main_tickets):
    program = FakeProgram(MAIN, make_state(), tickets=main_tickets)
    program.lose_confirmation("finalize")

    draw = run_lifecycle(make_ctx(program))

    assert draw.phase == DrawPhase.FINALIZED
    assert program.lifecycle_calls().count("finalize") == 1


def test_implausible_counts_alert_but_still_finalize(make_ctx, alerts):
    tickets = [
        ticket([1, 2, 3, 10 + i, 20 + i, 30 + i], owner=f"o{i}") for i in range(10)
    ]
    program = FakeProgram(MAIN, make_state(), tickets=tickets)

    draw = run_lifecycle(make_ctx(program))

    assert draw.phase == DrawPhase.FINALIZED
    assert not draw.plausibility.ok
    assert "warn" in alerts.levels()


def test_fetch_state_failure_is_an_error(make_ctx):
    program = FakeProgram(MAIN, make_state())

    def broken():
        raise RpcError("down")

    program.fetch_state = broken
    draw = run_lifecycle(make_ctx(program))
    assert draw.phase == DrawPhase.ERROR
    assert draw.failed_phase == "fetch_state"


def test_one_game_failing_does_not_stop_the_other(make_ctx, main_tickets):
    main = FakeProgram(MAIN, make_state(), tickets=main_tickets)
    main.fail("commit", *[RpcError("boom")] * 10)
    qp = FakeProgram(
        QUICK_PICK, make_state(next_draw_timestamp=NOW), winning=(1, 2, 3, 4, 5)
    )

    results = run_tick([make_ctx(main), make_ctx(qp)])

    assert [r.phase for r in results] == [DrawPhase.ERROR, DrawPhase.FINALIZED]


def test_finalize_requires_index(make_ctx):
    program = FakeProgram(MAIN, make_state())
    draw = DrawState(program="main", draw_id=7, phase=DrawPhase.EXECUTED)
    with pytest.raises(PhaseOrderError):
        finalize_phase(make_ctx(program), draw)
    assert program.calls == []


def test_draw_state_rejects_skipping_phases():
    draw = DrawState(program="main", draw_id=1)
    with pytest.raises(PhaseOrderError):
        draw.advance(DrawPhase.INDEXED)
    draw.advance(DrawPhase.AWAITING_COMMIT)
    draw.advance(DrawPhase.COMMITTED)
    with pytest.raises(PhaseOrderError):
        draw.advance(DrawPhase.FINALIZED)


class ZeroWinnerMainProgram(FakeProgram):
    """Main draw results carry no flag, so zero prizes leave them unmarked."""

    def finalize_draw(self, draw_id, winner_counts, verification_hash, nonce):
        try:
            return super().finalize_draw(
                draw_id, winner_counts, verification_hash, nonce
            )
        finally:
            self.draw_result = replace(self.draw_result, is_explicitly_finalized=False)


def test_lost_finalize_confirmation_detected_from_program_state(make_ctx):
    program = ZeroWinnerMainProgram(
        MAIN, make_state(), tickets=[ticket([20, 21, 22, 23, 24, 25])]
    )
    program.lose_confirmation("finalize")

    draw = run_lifecycle(make_ctx(program))

    assert draw.phase == DrawPhase.FINALIZED
    assert program.lifecycle_calls().count("finalize") == 1
