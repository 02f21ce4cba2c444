from __future__ import annotations

from dataclasses import dataclass
from math import comb
from typing import Dict, Iterable, Tuple

from .errors import IndexerError
from .project_constants import (
    DRAW_COMMIT_TIMEOUT,
    DRAW_SEED,
    LOTTERY_SEED,
    MAX_NUMBER,
    NUMBERS_PER_TICKET,
    QP_MAX_NUMBER,
    QP_NUMBERS_PER_TICKET,
    QP_TICKET_SALE_CUTOFF,
    QUICK_PICK_DRAW_SEED,
    QUICK_PICK_SEED,
    TICKET_SALE_CUTOFF,
)


@dataclass(frozen=True)
class GameSpec:
    """Static description of one lottery game.

    `tiers` lists the prize tiers as match counts, highest first. The order is
    significant: it is the order winner counts are serialised in the
    verification hash and in the finalize_draw arguments.
    """

    key: str
    label: str
    numbers_per_ticket: int
    max_number: int
    tiers: Tuple[int, ...]
    ticket_sale_cutoff: int
    commit_timeout: int
    state_seed: bytes
    draw_seed: bytes

    @property
    def tier_names(self) -> Tuple[str, ...]:
        return tuple(f"match{k}" for k in self.tiers)

    def tier_probability(self, matches: int) -> float:
        """Hypergeometric chance that a ticket matches exactly `matches` numbers."""
        n, k = self.max_number, self.numbers_per_ticket
        if matches < 0 or matches > k:
            return 0.0
        return comb(k, matches) * comb(n - k, k - matches) / comb(n, k)

    def validate_numbers(self, numbers: Iterable[int]) -> Tuple[int, ...]:
        nums = tuple(sorted(int(n) for n in numbers))
        if len(nums) != self.numbers_per_ticket:
            raise IndexerError(
                f"[{self.key}] expected {self.numbers_per_ticket} numbers, "
                f"got {len(nums)}"
            )
        for n in nums:
            if n < 1 or n > self.max_number:
                raise IndexerError(
                    f"[{self.key}] number {n} out of range [1, {self.max_number}]"
                )
        if len(set(nums)) != len(nums):
            raise IndexerError(f"[{self.key}] duplicate numbers in {list(nums)}")
        return nums


MAIN = GameSpec(
    key="main",
    label="Main Lottery (6/46)",
    numbers_per_ticket=NUMBERS_PER_TICKET,
    max_number=MAX_NUMBER,
    tiers=(6, 5, 4, 3, 2),
    ticket_sale_cutoff=TICKET_SALE_CUTOFF,
    commit_timeout=DRAW_COMMIT_TIMEOUT,
    state_seed=LOTTERY_SEED,
    draw_seed=DRAW_SEED,
)

QUICK_PICK = GameSpec(
    key="quickpick",
    label="Quick Pick Express (5/35)",
    numbers_per_ticket=QP_NUMBERS_PER_TICKET,
    max_number=QP_MAX_NUMBER,
    tiers=(5, 4, 3),
    ticket_sale_cutoff=QP_TICKET_SALE_CUTOFF,
    commit_timeout=DRAW_COMMIT_TIMEOUT,
    state_seed=QUICK_PICK_SEED,
    draw_seed=QUICK_PICK_DRAW_SEED,
)

GAMES: Dict[str, GameSpec] = {MAIN.key: MAIN, QUICK_PICK.key: QUICK_PICK}
