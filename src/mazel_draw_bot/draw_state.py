from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .alerts import AlertSink, LogAlertSink
from .games import GameSpec
from .indexer import IndexResult, PlausibilityReport
from .program import GameProgram
from .retry import RetryExecutor


class DrawPhase(str, Enum):
    IDLE = "idle"
    AWAITING_COMMIT = "awaiting_commit"
    COMMITTED = "committed"
    EXECUTED = "executed"
    INDEXED = "indexed"
    FINALIZED = "finalized"
    ERROR = "error"


# Each forward phase and the phases it may be entered from. Recovery enters
# COMMITTED or EXECUTED straight from IDLE because the chain already records
# the earlier phases.
_ALLOWED_FROM = {
    DrawPhase.AWAITING_COMMIT: (DrawPhase.IDLE,),
    DrawPhase.COMMITTED: (DrawPhase.AWAITING_COMMIT, DrawPhase.IDLE),
    DrawPhase.EXECUTED: (DrawPhase.COMMITTED, DrawPhase.IDLE),
    DrawPhase.INDEXED: (DrawPhase.EXECUTED,),
    DrawPhase.FINALIZED: (DrawPhase.INDEXED,),
}


class PhaseOrderError(RuntimeError):
    pass


@dataclass
class DrawState:
    """One lifecycle run's view of a draw. Discarded when the run ends."""

    program: str
    draw_id: int
    phase: DrawPhase = DrawPhase.IDLE
    commit_slot: Optional[int] = None
    randomness_account: Optional[str] = None
    winning_numbers: Optional[Tuple[int, ...]] = None
    index_result: Optional[IndexResult] = None
    plausibility: Optional[PlausibilityReport] = None
    error_count: int = 0
    last_error: Optional[str] = None
    failed_phase: Optional[str] = None
    skip_reason: Optional[str] = None
    cancelled: bool = False
    recovered: bool = False
    signatures: List[Tuple[str, str]] = field(default_factory=list)

    def advance(self, phase: DrawPhase) -> None:
        allowed = _ALLOWED_FROM.get(phase, ())
        if self.phase not in allowed:
            raise PhaseOrderError(
                f"[{self.program}] draw #{self.draw_id}: "
                f"cannot enter {phase.value} from {self.phase.value}"
            )
        self.phase = phase

    def fail(self, phase: str, error: BaseException) -> None:
        self.failed_phase = phase
        self.last_error = str(error)
        self.error_count += 1
        self.phase = DrawPhase.ERROR

    def record_tx(self, label: str, signature: str) -> None:
        if signature:
            self.signatures.append((label, signature))


@dataclass
class DrawContext:
    """Everything one lifecycle run needs, passed explicitly through every call."""

    game: GameSpec
    program: GameProgram
    retry: RetryExecutor
    alerts: AlertSink = field(default_factory=LogAlertSink)
    dry_run: bool = False
    commit_execute_delay_s: float = 4.0
    ticket_sale_cutoff: Optional[int] = None
    commit_timeout: Optional[int] = None
    nonce_seed: Optional[int] = None
    clock: Callable[[], float] = time.time
    sleep: Callable[[float], None] = time.sleep

    @property
    def cutoff(self) -> int:
        if self.ticket_sale_cutoff is None:
            return self.game.ticket_sale_cutoff
        return self.ticket_sale_cutoff

    @property
    def timeout(self) -> int:
        if self.commit_timeout is None:
            return self.game.commit_timeout
        return self.commit_timeout

    def now(self) -> int:
        return int(self.clock())
