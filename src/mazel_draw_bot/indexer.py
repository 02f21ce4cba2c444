"""
Ticket indexer: turns public, already-committed chain data into the
winner counts and verification hash that finalize_draw consumes.

Verification hash layout (SHA-256 over):
    draw_id u64le || winning numbers (1 byte each, ascending)
    || winner count per tier u32le (highest tier first) || nonce u64le

Anyone holding the public ticket accounts and the published nonce can
recompute it.
"""
from __future__ import annotations

import hashlib
import logging
import math
import secrets
import struct
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple

from .accounts import Ticket
from .games import GameSpec

if TYPE_CHECKING:
    from .program import GameProgram

log = logging.getLogger(__name__)

# Plausibility tolerance: observed counts may exceed the expectation by this
# factor, or by this many standard deviations, before a warning is raised.
PLAUSIBILITY_FACTOR = 10.0
PLAUSIBILITY_SIGMAS = 6.0
INVERSION_MIN_TICKETS = 1000
INVERSION_MAX_PROBABILITY = 0.1


@dataclass(frozen=True)
class WinnerCounts:
    tiers: Tuple[int, ...]
    counts: Tuple[int, ...]

    @staticmethod
    def zero(game: GameSpec) -> "WinnerCounts":
        return WinnerCounts(game.tiers, tuple(0 for _ in game.tiers))

    def get(self, matches: int) -> int:
        return self.counts[self.tiers.index(matches)]

    def with_count(self, matches: int, value: int) -> "WinnerCounts":
        idx = self.tiers.index(matches)
        counts = list(self.counts)
        counts[idx] = value
        return WinnerCounts(self.tiers, tuple(counts))

    def total(self) -> int:
        return sum(self.counts)

    def as_dict(self) -> Dict[str, int]:
        return {f"match{k}": c for k, c in zip(self.tiers, self.counts)}

    def serialize(self) -> bytes:
        return struct.pack(f"<{len(self.counts)}I", *self.counts)


@dataclass(frozen=True)
class IndexResult:
    draw_id: int
    winning_numbers: Tuple[int, ...]
    winner_counts: WinnerCounts
    total_tickets_scanned: int
    verification_hash: bytes
    nonce: int
    duration_ms: int = 0
    # The tickets that were counted, in scan order.
    tickets: Tuple[Ticket, ...] = ()

    @property
    def verification_hash_hex(self) -> str:
        return self.verification_hash.hex()


@dataclass(frozen=True)
class PlausibilityReport:
    ok: bool
    warnings: Tuple[str, ...] = ()


def count_matches(ticket_numbers: Iterable[int], winning_numbers: Iterable[int]) -> int:
    return len(set(ticket_numbers) & set(winning_numbers))


def tally_winners(
    game: GameSpec,
    tickets: Iterable[Sequence[int]],
    winning_numbers: Sequence[int],
) -> Tuple[WinnerCounts, int]:
    """Returns (winner counts, number of tickets scanned)."""
    winning = set(winning_numbers)
    by_tier = {k: 0 for k in game.tiers}
    scanned = 0
    for numbers in tickets:
        scanned += 1
        matches = len(winning.intersection(numbers))
        if matches in by_tier:
            by_tier[matches] += 1
    return WinnerCounts(game.tiers, tuple(by_tier[k] for k in game.tiers)), scanned


def compute_verification_hash(
    draw_id: int,
    winning_numbers: Sequence[int],
    counts: WinnerCounts,
    nonce: int,
) -> bytes:
    buf = struct.pack("<Q", draw_id)
    buf += bytes(sorted(winning_numbers))
    buf += counts.serialize()
    buf += struct.pack("<Q", nonce)
    return hashlib.sha256(buf).digest()


def generate_nonce(seed: Optional[int] = None) -> int:
    """A fixed seed gives a reproducible nonce for audit replays."""
    if seed is not None:
        return int(seed) & 0xFFFFFFFFFFFFFFFF
    return secrets.randbits(64)


def plausibility_threshold(probability: float, total_tickets: int) -> int:
    expected = probability * total_tickets
    sigma = math.sqrt(total_tickets * probability * (1.0 - probability))
    bound = max(expected * PLAUSIBILITY_FACTOR, expected + PLAUSIBILITY_SIGMAS * sigma)
    return max(1, math.ceil(bound))


def plausibility_check(
    game: GameSpec,
    counts: WinnerCounts,
    total_tickets: int,
) -> PlausibilityReport:
    """
    Compare winner counts with the hypergeometric expectation for the game.

    Only flags implausibly HIGH counts; a quiet draw is never suspicious.
    The result is advisory: finalization proceeds regardless.
    """
    warnings = []

    if total_tickets > 0:
        for matches, observed in zip(counts.tiers, counts.counts):
            p = game.tier_probability(matches)
            threshold = plausibility_threshold(p, total_tickets)
            if observed > threshold:
                warnings.append(
                    f"Match {matches} count ({observed}) exceeds "
                    f"plausibility threshold ({threshold}) for {total_tickets} tickets"
                )

    if counts.total() > total_tickets:
        warnings.append(
            f"Total winners ({counts.total()}) exceeds total tickets ({total_tickets})"
        )

    # Inversions are only checked between tiers rarer than INVERSION_MAX_PROBABILITY.
    if total_tickets > INVERSION_MIN_TICKETS:
        for higher, lower in zip(counts.tiers, counts.tiers[1:]):
            if game.tier_probability(lower) >= INVERSION_MAX_PROBABILITY:
                continue
            hi, lo = counts.get(higher), counts.get(lower)
            if lo > 0 and hi > lo:
                warnings.append(
                    f"Match {higher} count ({hi}) > Match {lower} count ({lo}) "
                    f"(unusual for {total_tickets} tickets)"
                )

    for w in warnings:
        log.warning("[%s] plausibility: %s", game.key, w)

    return PlausibilityReport(ok=not warnings, warnings=tuple(warnings))


def index_draw(
    game: GameSpec,
    program: "GameProgram",
    draw_id: int,
    winning_numbers: Sequence[int],
    nonce: int,
) -> IndexResult:
    """
    Scan every ticket for `draw_id` and produce the finalize_draw commitment.

    The nonce is an input, not generated here: the caller picks it once and
    passes the same value to finalize_draw.
    """
    start = time.monotonic()
    winning = game.validate_numbers(winning_numbers)
    log.info(
        "[%s] Indexing draw #%d, winning numbers %s", game.key, draw_id, list(winning)
    )

    tickets = program.fetch_tickets(draw_id)
    valid: List[Ticket] = []
    for t in tickets:
        if t.draw_id != draw_id:
            log.warning(
                "[%s] Skipping ticket of %s for draw #%d", game.key, t.owner, t.draw_id
            )
            continue
        if len(t.numbers) != game.numbers_per_ticket or not all(
            1 <= n <= game.max_number for n in t.numbers
        ):
            log.warning(
                "[%s] Skipping malformed ticket of %s: %s", game.key, t.owner, t.numbers
            )
            continue
        valid.append(t)

    counts, scanned = tally_winners(game, [t.numbers for t in valid], winning)
    verification_hash = compute_verification_hash(draw_id, winning, counts, nonce)
    duration_ms = int((time.monotonic() - start) * 1000)

    log.info(
        "[%s] draw #%d indexed in %dms: %d tickets, %s, hash %s",
        game.key,
        draw_id,
        duration_ms,
        scanned,
        counts.as_dict(),
        verification_hash.hex(),
    )

    return IndexResult(
        draw_id=draw_id,
        winning_numbers=winning,
        winner_counts=counts,
        total_tickets_scanned=scanned,
        verification_hash=verification_hash,
        nonce=nonce,
        duration_ms=duration_ms,
        tickets=tuple(valid),
    )
