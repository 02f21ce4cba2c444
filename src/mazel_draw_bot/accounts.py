from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import base58

from .errors import AccountDecodeError

# Every Anchor account starts with an 8-byte discriminator followed by
# owner (32) and, for tickets, the u64 draw id.
DISCRIMINATOR_LEN = 8
TICKET_DRAW_ID_OFFSET = DISCRIMINATOR_LEN + 32


def account_discriminator(account_name: str) -> bytes:
    return hashlib.sha256(f"account:{account_name}".encode("utf-8")).digest()[:8]


@dataclass(frozen=True)
class ProgramState:
    """The on-chain facts the orchestrator derives every decision from."""

    current_draw_id: int
    is_draw_in_progress: bool
    is_paused: bool
    is_funded: bool
    next_draw_timestamp: int
    commit_slot: int
    commit_timestamp: int
    current_randomness_account: Optional[str]
    jackpot_balance: int
    current_draw_tickets: int = 0


@dataclass(frozen=True)
class DrawResult:
    draw_id: int
    winning_numbers: Tuple[int, ...]
    is_explicitly_finalized: bool
    total_tickets: int
    was_rolldown: bool


@dataclass(frozen=True)
class Ticket:
    owner: str
    draw_id: int
    numbers: Tuple[int, ...]
    is_claimed: bool = False
    match_count: int = 0
    prize_amount: int = 0


class _Reader:
    """Sequential borsh reader over raw account bytes."""

    def __init__(self, data: bytes, name: str) -> None:
        self.data = data
        self.name = name
        self.pos = 0

    def _take(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise AccountDecodeError(
                f"{self.name}: truncated at byte {self.pos} "
                f"(need {n}, have {len(self.data) - self.pos})"
            )
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def discriminator(self, account_name: str) -> None:
        if self._take(DISCRIMINATOR_LEN) != account_discriminator(account_name):
            raise AccountDecodeError(f"{self.name}: not a {account_name} account")

    def u8(self) -> int:
        return self._take(1)[0]

    def bool(self) -> bool:
        return self.u8() != 0

    def u16(self) -> int:
        return struct.unpack("<H", self._take(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self._take(8))[0]

    def i64(self) -> int:
        return struct.unpack("<q", self._take(8))[0]

    def pubkey(self) -> str:
        return base58.b58encode(self._take(32)).decode("ascii")

    def option_pubkey(self) -> Optional[str]:
        return self.pubkey() if self.u8() else None

    def array(self, n: int) -> Tuple[int, ...]:
        return tuple(self._take(n))

    def vec_u8(self) -> bytes:
        return self._take(self.u32())


DEFAULT_PUBKEY = base58.b58encode(bytes(32)).decode("ascii")


def _randomness_ref(value: Optional[str]) -> Optional[str]:
    if value is None or value == DEFAULT_PUBKEY:
        return None
    return value


def decode_lottery_state(data: bytes) -> ProgramState:
    r = _Reader(data, "LotteryState")
    r.discriminator("LotteryState")
    r.pubkey()  # authority
    r.option_pubkey()  # pending_authority
    r.pubkey()  # switchboard_queue
    randomness = r.option_pubkey()
    current_draw_id = r.u64()
    jackpot_balance = r.u64()
    r.u64()  # reserve_balance
    r.u64()  # insurance_balance
    r.u64()  # ticket_price
    r.u16()  # house_fee_bps
    r.u64()  # jackpot_cap
    r.u64()  # seed_amount
    r.u64()  # soft_cap
    r.u64()  # hard_cap
    next_draw_timestamp = r.i64()
    r.i64()  # draw_interval
    commit_slot = r.u64()
    commit_timestamp = r.i64()
    current_draw_tickets = r.u64()
    r.u64()  # total_tickets_sold
    r.u64()  # total_prizes_paid
    is_draw_in_progress = r.bool()
    r.bool()  # is_rolldown_active
    is_paused = r.bool()
    is_funded = r.bool()
    return ProgramState(
        current_draw_id=current_draw_id,
        is_draw_in_progress=is_draw_in_progress,
        is_paused=is_paused,
        is_funded=is_funded,
        next_draw_timestamp=next_draw_timestamp,
        commit_slot=commit_slot,
        commit_timestamp=commit_timestamp,
        current_randomness_account=_randomness_ref(randomness),
        jackpot_balance=jackpot_balance,
        current_draw_tickets=current_draw_tickets,
    )


def decode_quick_pick_state(data: bytes) -> ProgramState:
    r = _Reader(data, "QuickPickState")
    r.discriminator("QuickPickState")
    current_draw = r.u64()
    r.u64()  # ticket_price
    r.u8()  # pick_count
    r.u8()  # number_range
    r.u16()  # house_fee_bps
    r.i64()  # draw_interval
    next_draw_timestamp = r.i64()
    jackpot_balance = r.u64()
    r.u64()  # soft_cap
    r.u64()  # hard_cap
    r.u64()  # seed_amount
    r.u64()  # match_4_prize
    r.u64()  # match_3_prize
    current_draw_tickets = r.u64()
    r.u64()  # prize_pool_balance
    r.u64()  # insurance_balance
    r.u64()  # reserve_balance
    r.u64()  # total_tickets_sold
    r.u64()  # total_prizes_paid
    randomness = r.pubkey()
    commit_slot = r.u64()
    commit_timestamp = r.i64()
    is_draw_in_progress = r.bool()
    r.bool()  # is_rolldown_pending
    is_paused = r.bool()
    is_funded = r.bool()
    return ProgramState(
        current_draw_id=current_draw,
        is_draw_in_progress=is_draw_in_progress,
        is_paused=is_paused,
        is_funded=is_funded,
        next_draw_timestamp=next_draw_timestamp,
        commit_slot=commit_slot,
        commit_timestamp=commit_timestamp,
        current_randomness_account=_randomness_ref(randomness),
        jackpot_balance=jackpot_balance,
        current_draw_tickets=current_draw_tickets,
    )


def _decode_draw_result(
    data: bytes,
    account_name: str,
    numbers: int,
    tiers: int,
    has_explicit_flag: bool,
) -> DrawResult:
    r = _Reader(data, account_name)
    r.discriminator(account_name)
    draw_id = r.u64()
    winning = r.array(numbers)
    r.array(32)  # randomness_proof
    r.i64()  # timestamp
    total_tickets = r.u64()
    was_rolldown = r.bool()
    for _ in range(tiers):
        r.u32()  # winner counts
    prizes = [r.u64() for _ in range(tiers)]
    # Without the flag only a prize written by finalize_draw marks the draw
    # finalized. Accounts are allocated past the layout, so trailing bytes
    # say nothing about which layout is in use.
    explicit = r.bool() if has_explicit_flag else False
    finalized = explicit or any(p > 0 for p in prizes)
    return DrawResult(
        draw_id=draw_id,
        winning_numbers=tuple(sorted(winning)),
        is_explicitly_finalized=finalized,
        total_tickets=total_tickets,
        was_rolldown=was_rolldown,
    )


def decode_draw_result(data: bytes) -> DrawResult:
    return _decode_draw_result(data, "DrawResult", 6, 5, has_explicit_flag=False)


def decode_quick_pick_draw_result(data: bytes) -> DrawResult:
    return _decode_draw_result(
        data, "QuickPickDrawResult", 5, 3, has_explicit_flag=True
    )


def decode_ticket_data(data: bytes) -> List[Ticket]:
    r = _Reader(data, "TicketData")
    r.discriminator("TicketData")
    owner = r.pubkey()
    draw_id = r.u64()
    numbers = tuple(sorted(r.array(6)))
    r.i64()  # purchase_timestamp
    is_claimed = r.bool()
    match_count = r.u8()
    prize_amount = r.u64()
    return [Ticket(owner, draw_id, numbers, is_claimed, match_count, prize_amount)]


def decode_unified_ticket(data: bytes) -> List[Ticket]:
    """A bulk purchase: one account holding many 6-number tickets."""
    r = _Reader(data, "UnifiedTicket")
    r.discriminator("UnifiedTicket")
    owner = r.pubkey()
    draw_id = r.u64()
    r.u64()  # start_ticket_id
    ticket_count = r.u32()
    vec_len = r.u32()
    count = min(ticket_count, vec_len)
    sets = [r.array(6) for _ in range(vec_len)][:count]
    r.i64()  # purchase_timestamp
    r.option_pubkey()  # syndicate
    claimed_bitmap = r.vec_u8()

    tickets: List[Ticket] = []
    for i, numbers in enumerate(sets):
        byte = claimed_bitmap[i // 8] if i // 8 < len(claimed_bitmap) else 0
        claimed = bool(byte & (1 << (i % 8)))
        tickets.append(Ticket(owner, draw_id, tuple(sorted(numbers)), claimed))
    return tickets


def decode_quick_pick_ticket(data: bytes) -> List[Ticket]:
    r = _Reader(data, "QuickPickTicket")
    r.discriminator("QuickPickTicket")
    owner = r.pubkey()
    draw_id = r.u64()
    numbers = tuple(sorted(r.array(5)))
    r.i64()  # purchase_timestamp
    is_claimed = r.bool()
    match_count = r.u8()
    prize_amount = r.u64()
    return [Ticket(owner, draw_id, numbers, is_claimed, match_count, prize_amount)]


TicketDecoder = Callable[[bytes], List[Ticket]]

# Ticket account kinds per game, scanned with a discriminator + draw id filter.
TICKET_ACCOUNTS: Dict[str, List[Tuple[str, TicketDecoder]]] = {
    "main": [
        ("TicketData", decode_ticket_data),
        ("UnifiedTicket", decode_unified_ticket),
    ],
    "quickpick": [
        ("QuickPickTicket", decode_quick_pick_ticket),
    ],
}
