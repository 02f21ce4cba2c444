from mazel_draw_bot.readiness import (
    InProgress,
    NotReady,
    ReadyToStart,
    evaluate_readiness,
)

from conftest import NOW, make_state


def test_ready_once_sales_close():
    state = make_state(next_draw_timestamp=NOW + 3600)
    assert evaluate_readiness(state, NOW, 3600) == ReadyToStart(7)
    assert isinstance(evaluate_readiness(state, NOW - 1, 3600), NotReady)


def test_cutoff_is_per_game():
    state = make_state(next_draw_timestamp=NOW + 600)
    assert isinstance(evaluate_readiness(state, NOW, 300), NotReady)
    assert evaluate_readiness(state, NOW, 3600) == ReadyToStart(7)


def test_paused_and_unfunded_are_not_ready():
    paused = evaluate_readiness(make_state(is_paused=True), NOW, 3600)
    assert paused == NotReady("program is paused")
    unfunded = evaluate_readiness(make_state(is_funded=False), NOW, 3600)
    assert unfunded == NotReady("program is not funded")


def test_in_progress_goes_to_recovery():
    state = make_state(is_draw_in_progress=True, next_draw_timestamp=NOW + 99999)
    assert evaluate_readiness(state, NOW, 3600) == InProgress(7)


def test_readiness_is_idempotent():
    for state in (
        make_state(),
        make_state(is_paused=True),
        make_state(is_draw_in_progress=True),
        make_state(next_draw_timestamp=NOW + 10_000),
    ):
        first = evaluate_readiness(state, NOW, 3600)
        assert evaluate_readiness(state, NOW, 3600) == first
