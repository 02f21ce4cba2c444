from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

import pytest

from mazel_draw_bot.accounts import DrawResult, ProgramState, Ticket
from mazel_draw_bot.draw_state import DrawContext
from mazel_draw_bot.errors import TransactionError
from mazel_draw_bot.games import MAIN, GameSpec
from mazel_draw_bot.program import CommitResult, TxReceipt
from mazel_draw_bot.retry import RetryExecutor

NOW = 1_700_000_000
RANDOMNESS = "RandomnessAccount1111111111111111111111111"


def make_state(**overrides: Any) -> ProgramState:
    fields = dict(
        current_draw_id=7,
        is_draw_in_progress=False,
        is_paused=False,
        is_funded=True,
        next_draw_timestamp=NOW + 600,
        commit_slot=0,
        commit_timestamp=0,
        current_randomness_account=None,
        jackpot_balance=1_000_000,
        current_draw_tickets=3,
    )
    fields.update(overrides)
    return ProgramState(**fields)


def ticket(numbers: Sequence[int], draw_id: int = 7, owner: str = "owner") -> Ticket:
    return Ticket(owner=owner, draw_id=draw_id, numbers=tuple(sorted(numbers)))


class FakeProgram:
    """In-memory GameProgram that applies each instruction's on-chain effect."""

    def __init__(
        self,
        game: GameSpec,
        state: ProgramState,
        draw_result: Optional[DrawResult] = None,
        tickets: Sequence[Ticket] = (),
        winning: Sequence[int] = (1, 2, 3, 4, 5, 6),
    ) -> None:
        self.game = game
        self.state = state
        self.draw_result = draw_result
        self.tickets = list(tickets)
        self.winning = tuple(winning)
        self.calls: List[str] = []
        self.failures: Dict[str, List[BaseException]] = {}
        self.lost_confirmations: Dict[str, int] = {}
        self.finalized_with: Optional[tuple] = None
        self.cancel_reason: Optional[str] = None

    def fail(self, op: str, *errors: BaseException) -> None:
        self.failures.setdefault(op, []).extend(errors)

    def lose_confirmation(self, op: str, times: int = 1) -> None:
        self.lost_confirmations[op] = times

    def _before(self, op: str) -> None:
        self.calls.append(op)
        pending = self.failures.get(op)
        if pending:
            raise pending.pop(0)

    def _after(self, op: str) -> None:
        if self.lost_confirmations.get(op, 0) > 0:
            self.lost_confirmations[op] -= 1
            raise TransactionError(op, "not confirmed within 60s", "sig")

    def fetch_state(self) -> ProgramState:
        return self.state

    def fetch_draw_result(self, draw_id: int) -> Optional[DrawResult]:
        if self.draw_result is not None and self.draw_result.draw_id == draw_id:
            return self.draw_result
        return None

    def fetch_tickets(self, draw_id: int) -> List[Ticket]:
        self.calls.append("fetch_tickets")
        return [t for t in self.tickets if t.draw_id == draw_id]

    def commit_randomness(self) -> CommitResult:
        self._before("commit")
        self.state = replace(
            self.state,
            is_draw_in_progress=True,
            commit_slot=4242,
            commit_timestamp=NOW,
            current_randomness_account=RANDOMNESS,
        )
        self._after("commit")
        return CommitResult("sig-commit", RANDOMNESS, 4242)

    def execute_draw(self, draw_id: int, randomness_account: str) -> TxReceipt:
        self._before("execute")
        self.draw_result = DrawResult(
            draw_id=draw_id,
            winning_numbers=self.winning,
            is_explicitly_finalized=False,
            total_tickets=len(self.tickets),
            was_rolldown=False,
        )
        self._after("execute")
        return TxReceipt("execute_draw", "sig-execute")

    def finalize_draw(
        self, draw_id: int, winner_counts, verification_hash: bytes, nonce: int
    ) -> TxReceipt:
        self._before("finalize")
        self.finalized_with = (tuple(winner_counts), bytes(verification_hash), nonce)
        self.draw_result = replace(self.draw_result, is_explicitly_finalized=True)
        self.state = replace(
            self.state,
            is_draw_in_progress=False,
            current_draw_id=self.state.current_draw_id + 1,
        )
        self._after("finalize")
        return TxReceipt("finalize_draw", "sig-finalize")

    def cancel_draw(self, reason: str) -> TxReceipt:
        self._before("cancel")
        self.cancel_reason = reason
        self.state = replace(
            self.state, is_draw_in_progress=False, current_randomness_account=None
        )
        return TxReceipt("cancel_draw", "sig-cancel")

    def force_finalize_draw(self, draw_id: int, reason: str) -> TxReceipt:
        self._before("force_finalize")
        return TxReceipt("force_finalize_draw", "sig-force")

    def lifecycle_calls(self) -> List[str]:
        lifecycle = ("commit", "execute", "fetch_tickets", "finalize", "cancel")
        return [c for c in self.calls if c in lifecycle]


class RecordingAlerts:
    def __init__(self) -> None:
        self.sent: List[tuple] = []

    def send(self, level: str, message: str, context=None) -> None:
        self.sent.append((level, message, dict(context or {})))

    def levels(self) -> List[str]:
        return [s[0] for s in self.sent]


@pytest.fixture
def alerts() -> RecordingAlerts:
    return RecordingAlerts()


@pytest.fixture
def make_ctx(alerts):
    def _make(program: FakeProgram, now: int = NOW, **kwargs: Any) -> DrawContext:
        sleeps: List[float] = []
        ctx = DrawContext(
            game=program.game,
            program=program,
            retry=RetryExecutor(max_retries=2, base_delay_ms=1000, sleep=sleeps.append),
            alerts=alerts,
            clock=lambda: now,
            sleep=sleeps.append,
            nonce_seed=kwargs.pop("nonce_seed", 99),
            **kwargs,
        )
        ctx.sleeps = sleeps  # type: ignore[attr-defined]
        return ctx

    return _make


@pytest.fixture
def main_tickets() -> List[Ticket]:
    return [
        ticket([1, 2, 3, 4, 5, 6]),
        ticket([1, 2, 3, 4, 5, 7]),
        ticket([1, 2, 3, 40, 41, 42]),
        ticket([7, 8, 9, 10, 11, 12]),
    ]


@pytest.fixture
def main_game() -> GameSpec:
    return MAIN
