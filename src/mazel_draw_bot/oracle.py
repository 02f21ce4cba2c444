"""
Commit-reveal randomness oracle.

The draw bot never reads the revealed value itself: it only creates a fresh
randomness account and bundles the oracle's commit request with the game
program's own commit_randomness instruction. The program reads the revealed
value during execute_draw.
"""
from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import List, Protocol

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .project_constants import SLOT_HASHES_SYSVAR_ID, SYSTEM_PROGRAM_ID


@dataclass(frozen=True)
class RandomnessRequest:
    account: Pubkey
    instructions: List[Instruction] = field(default_factory=list)
    signers: List[Keypair] = field(default_factory=list)


class RandomnessOracle(Protocol):
    def request(self, authority: Pubkey, recent_slot: int) -> RandomnessRequest:
        """Instructions and signers that create and commit a randomness account."""
        ...


_SYSTEM_PROGRAM = Pubkey.from_string(SYSTEM_PROGRAM_ID)
_SLOT_HASHES = Pubkey.from_string(SLOT_HASHES_SYSVAR_ID)


def _anchor_ix(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


class SwitchboardOracle:
    """Switchboard on-demand: randomness_init followed by randomness_commit."""

    def __init__(self, program_id: str, queue: str) -> None:
        self.program_id = Pubkey.from_string(program_id)
        self.queue = Pubkey.from_string(queue)

    def request(self, authority: Pubkey, recent_slot: int) -> RandomnessRequest:
        randomness = Keypair()
        account = randomness.pubkey()

        init_ix = Instruction(
            self.program_id,
            _anchor_ix("randomness_init") + struct.pack("<Q", recent_slot),
            [
                AccountMeta(account, is_signer=True, is_writable=True),
                AccountMeta(self.queue, is_signer=False, is_writable=True),
                AccountMeta(authority, is_signer=True, is_writable=False),
                AccountMeta(authority, is_signer=True, is_writable=True),  # payer
                AccountMeta(_SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            ],
        )
        commit_ix = Instruction(
            self.program_id,
            _anchor_ix("randomness_commit"),
            [
                AccountMeta(account, is_signer=False, is_writable=True),
                AccountMeta(self.queue, is_signer=False, is_writable=False),
                AccountMeta(_SLOT_HASHES, is_signer=False, is_writable=False),
                AccountMeta(authority, is_signer=True, is_writable=False),
            ],
        )
        return RandomnessRequest(
            account=account, instructions=[init_ix, commit_ix], signers=[randomness]
        )
