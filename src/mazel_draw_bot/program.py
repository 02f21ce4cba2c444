"""
Narrow capability interface over one on-chain lottery program.

The orchestrator only ever talks to a `GameProgram`. `SolanaGameProgram` is
the single concrete adapter; the two games differ only in their `GameSpec`
and in the account layouts below.
"""
from __future__ import annotations

import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .accounts import (
    DISCRIMINATOR_LEN,
    TICKET_ACCOUNTS,
    TICKET_DRAW_ID_OFFSET,
    DrawResult,
    ProgramState,
    Ticket,
    account_discriminator,
    decode_draw_result,
    decode_lottery_state,
    decode_quick_pick_draw_result,
    decode_quick_pick_state,
)
from .errors import (
    AccountDecodeError,
    AccountNotFoundError,
    IndexerError,
    TransactionError,
)
from .games import GameSpec
from .oracle import RandomnessOracle
from .project_constants import LOTTERY_SEED, SYSTEM_PROGRAM_ID
from .rpc import RpcClient, memcmp_filter

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TxReceipt:
    label: str
    signature: str


@dataclass(frozen=True)
class CommitResult:
    signature: str
    randomness_account: str
    commit_slot: int


class GameProgram(Protocol):
    game: GameSpec

    def fetch_state(self) -> ProgramState: ...

    def fetch_draw_result(self, draw_id: int) -> Optional[DrawResult]: ...

    def fetch_tickets(self, draw_id: int) -> List[Ticket]: ...

    def commit_randomness(self) -> CommitResult: ...

    def execute_draw(self, draw_id: int, randomness_account: str) -> TxReceipt: ...

    def finalize_draw(
        self,
        draw_id: int,
        winner_counts: Sequence[int],
        verification_hash: bytes,
        nonce: int,
    ) -> TxReceipt: ...

    def cancel_draw(self, reason: str) -> TxReceipt: ...

    def force_finalize_draw(self, draw_id: int, reason: str) -> TxReceipt: ...


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def borsh_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def draw_id_seed(draw_id: int) -> bytes:
    return struct.pack("<Q", draw_id)


# (role, signer, writable) per instruction, in the order the program's
# account contexts declare them.
_Meta = Tuple[str, bool, bool]

ACCOUNT_LAYOUTS: Dict[str, Dict[str, List[_Meta]]] = {
    "main": {
        "commit_randomness": [
            ("authority", True, True),
            ("lottery_state", False, True),
            ("randomness", False, False),
            ("switchboard_queue", False, False),
            ("system_program", False, False),
        ],
        "execute_draw": [
            ("lottery_state", False, True),
            ("draw_result", False, True),
            ("randomness", False, False),
            ("authority", True, True),  # payer
            ("system_program", False, False),
        ],
        "finalize_draw": [
            ("authority", True, False),
            ("lottery_state", False, True),
            ("draw_result", False, True),
        ],
        "cancel_draw": [
            ("authority", True, False),
            ("lottery_state", False, True),
        ],
        "force_finalize_draw": [
            ("authority", True, False),
            ("lottery_state", False, True),
            ("draw_result", False, True),
        ],
    },
    "quickpick": {
        "commit_randomness": [
            ("authority", True, True),
            ("lottery_state", False, False),
            ("game_state", False, True),
            ("randomness", False, False),
        ],
        "execute_draw": [
            ("authority", True, False),
            ("lottery_state", False, False),
            ("game_state", False, True),
            ("draw_result", False, True),
            ("randomness", False, False),
            ("authority", True, True),  # payer
            ("system_program", False, False),
        ],
        "finalize_draw": [
            ("authority", True, False),
            ("lottery_state", False, False),
            ("game_state", False, True),
            ("draw_result", False, True),
        ],
        "cancel_draw": [
            ("authority", True, False),
            ("lottery_state", False, False),
            ("game_state", False, True),
        ],
        "force_finalize_draw": [
            ("authority", True, False),
            ("lottery_state", False, False),
            ("game_state", False, True),
            ("draw_result", False, True),
        ],
    },
}

_STATE_DECODERS = {"main": decode_lottery_state, "quickpick": decode_quick_pick_state}
_DRAW_DECODERS = {
    "main": decode_draw_result,
    "quickpick": decode_quick_pick_draw_result,
}


class SolanaGameProgram:
    def __init__(
        self,
        game: GameSpec,
        rpc: RpcClient,
        program_id: str,
        lottery_program_id: str,
        authority: Keypair,
        oracle: RandomnessOracle,
        switchboard_queue: str,
        priority_fee_micro_lamports: int = 1000,
        compute_unit_limit: Optional[int] = None,
        skip_preflight: bool = False,
        confirm_timeout_s: float = 60.0,
        page_size: Optional[int] = None,
    ) -> None:
        self.game = game
        self.rpc = rpc
        self.program_id = Pubkey.from_string(program_id)
        self.authority = authority
        self.oracle = oracle
        self.switchboard_queue = Pubkey.from_string(switchboard_queue)
        self.priority_fee_micro_lamports = priority_fee_micro_lamports
        self.compute_unit_limit = compute_unit_limit
        self.skip_preflight = skip_preflight
        self.confirm_timeout_s = confirm_timeout_s
        self.page_size = page_size

        # Quick Pick instructions read the Main lottery state as well.
        self.lottery_state, _ = Pubkey.find_program_address(
            [LOTTERY_SEED], Pubkey.from_string(lottery_program_id)
        )
        self.game_state, _ = Pubkey.find_program_address(
            [game.state_seed], self.program_id
        )
        self._layouts = ACCOUNT_LAYOUTS[game.key]

    # ---- PDAs ----

    def draw_result_address(self, draw_id: int) -> Pubkey:
        pda, _ = Pubkey.find_program_address(
            [self.game.draw_seed, draw_id_seed(draw_id)], self.program_id
        )
        return pda

    # ---- queries ----

    def fetch_state(self) -> ProgramState:
        data = self.rpc.get_account_info(str(self.game_state))
        if data is None:
            raise AccountNotFoundError(
                f"[{self.game.key}] state account {self.game_state} not found"
            )
        return _STATE_DECODERS[self.game.key](data)

    def fetch_draw_result(self, draw_id: int) -> Optional[DrawResult]:
        data = self.rpc.get_account_info(str(self.draw_result_address(draw_id)))
        if data is None:
            return None
        return _DRAW_DECODERS[self.game.key](data)

    def fetch_tickets(self, draw_id: int) -> List[Ticket]:
        tickets: List[Ticket] = []
        for account_name, decode in TICKET_ACCOUNTS[self.game.key]:
            filters = [
                memcmp_filter(0, account_discriminator(account_name)),
                memcmp_filter(TICKET_DRAW_ID_OFFSET, draw_id_seed(draw_id)),
            ]
            accounts = self.rpc.get_program_accounts(
                str(self.program_id), filters, page_size=self.page_size
            )
            log.debug(
                "[%s] %s accounts for draw #%d: %d",
                self.game.key,
                account_name,
                draw_id,
                len(accounts),
            )
            for pubkey, data in accounts:
                if len(data) < DISCRIMINATOR_LEN:
                    continue
                try:
                    tickets.extend(decode(data))
                except AccountDecodeError as e:
                    log.warning(
                        "[%s] Skipping unreadable %s %s: %s",
                        self.game.key,
                        account_name,
                        pubkey,
                        e,
                    )
        return tickets

    # ---- instructions ----

    def commit_randomness(self) -> CommitResult:
        recent_slot = self.rpc.get_slot()
        request = self.oracle.request(self.authority.pubkey(), recent_slot)
        commit_ix = self._instruction(
            "commit_randomness", b"", randomness=request.account
        )
        signature = self._send(
            "commit_randomness",
            [*request.instructions, commit_ix],
            extra_signers=request.signers,
        )
        state = self.fetch_state()
        return CommitResult(
            signature=signature,
            randomness_account=str(request.account),
            commit_slot=state.commit_slot,
        )

    def execute_draw(self, draw_id: int, randomness_account: str) -> TxReceipt:
        try:
            randomness = Pubkey.from_string(randomness_account)
        except ValueError as e:
            raise AccountDecodeError(
                f"[{self.game.key}] bad randomness account {randomness_account!r}: {e}"
            ) from e
        ix = self._instruction(
            "execute_draw",
            b"",
            randomness=randomness,
            draw_result=self.draw_result_address(draw_id),
        )
        return TxReceipt("execute_draw", self._send("execute_draw", [ix]))

    def finalize_draw(
        self,
        draw_id: int,
        winner_counts: Sequence[int],
        verification_hash: bytes,
        nonce: int,
    ) -> TxReceipt:
        tiers = len(self.game.tiers)
        if len(winner_counts) != tiers:
            raise IndexerError(
                f"[{self.game.key}] expected {tiers} winner counts, "
                f"got {len(winner_counts)}"
            )
        if len(verification_hash) != 32:
            raise IndexerError(f"[{self.game.key}] verification hash must be 32 bytes")
        args = struct.pack(f"<{len(winner_counts)}I", *winner_counts)
        args += bytes(verification_hash)
        args += struct.pack("<Q", nonce)
        ix = self._instruction(
            "finalize_draw", args, draw_result=self.draw_result_address(draw_id)
        )
        return TxReceipt("finalize_draw", self._send("finalize_draw", [ix]))

    def cancel_draw(self, reason: str) -> TxReceipt:
        ix = self._instruction("cancel_draw", borsh_string(reason))
        return TxReceipt("cancel_draw", self._send("cancel_draw", [ix]))

    def force_finalize_draw(self, draw_id: int, reason: str) -> TxReceipt:
        ix = self._instruction(
            "force_finalize_draw",
            borsh_string(reason),
            draw_result=self.draw_result_address(draw_id),
        )
        signature = self._send("force_finalize_draw", [ix])
        return TxReceipt("force_finalize_draw", signature)

    # ---- plumbing ----

    def _instruction(self, name: str, args: bytes, **roles: Pubkey) -> Instruction:
        known = {
            "authority": self.authority.pubkey(),
            "lottery_state": self.lottery_state,
            "game_state": self.game_state,
            "switchboard_queue": self.switchboard_queue,
            "system_program": Pubkey.from_string(SYSTEM_PROGRAM_ID),
        }
        known.update(roles)
        metas = [
            AccountMeta(known[role], is_signer=signer, is_writable=writable)
            for role, signer, writable in self._layouts[name]
        ]
        data = instruction_discriminator(name) + args
        return Instruction(self.program_id, data, metas)

    def _send(
        self,
        label: str,
        instructions: List[Instruction],
        extra_signers: Sequence[Keypair] = (),
    ) -> str:
        prelude: List[Instruction] = []
        if self.priority_fee_micro_lamports > 0:
            prelude.append(set_compute_unit_price(self.priority_fee_micro_lamports))
        if self.compute_unit_limit:
            prelude.append(set_compute_unit_limit(self.compute_unit_limit))

        blockhash, last_valid_block_height = self.rpc.get_latest_blockhash()
        message = MessageV0.try_compile(
            self.authority.pubkey(),
            [*prelude, *instructions],
            [],
            Hash.from_string(blockhash),
        )
        tx = VersionedTransaction(message, [self.authority, *extra_signers])
        full_label = f"{self.game.key}.{label}"
        signature = self.rpc.send_transaction(
            bytes(tx), skip_preflight=self.skip_preflight
        )
        if not signature:
            raise TransactionError(full_label, "RPC returned no signature")
        self.rpc.confirm_transaction(
            signature,
            last_valid_block_height,
            timeout_s=self.confirm_timeout_s,
            label=full_label,
        )
        return signature
