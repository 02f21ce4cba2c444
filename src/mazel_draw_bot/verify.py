from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from .accounts import Ticket
from .errors import DrawBotError
from .games import GAMES, GameSpec
from .indexer import (
    IndexResult,
    WinnerCounts,
    compute_verification_hash,
    index_draw,
    tally_winners,
)
from .program import GameProgram

AUDIT_VERSION = "1.0.0"


class AuditMismatchError(DrawBotError):
    pass


def build_audit(
    game: GameSpec,
    result: IndexResult,
    tickets: Optional[Sequence[Ticket]] = None,
) -> Dict[str, Any]:
    """JSON-serialisable record from which anyone can recompute the commitment."""
    audit: Dict[str, Any] = {
        "metadata": {
            "tool": "mazel-draw-bot",
            "version": AUDIT_VERSION,
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "game": game.key,
            "draw_id": result.draw_id,
            "winning_numbers": list(result.winning_numbers),
            "nonce": str(result.nonce),  # u64; store as string for safety
            "total_tickets": result.total_tickets_scanned,
            "verification_hash_hex": result.verification_hash_hex,
        },
        "winner_counts": result.winner_counts.as_dict(),
    }
    if tickets is not None:
        # Deterministic order so two scans of the same draw produce identical files.
        audit["tickets"] = sorted(
            ({"owner": t.owner, "numbers": list(t.numbers)} for t in tickets),
            key=lambda t: (t["owner"], t["numbers"]),
        )
    return audit


def write_audit(path: str, audit: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(audit, f, indent=2)


def verify_audit(audit_path: str) -> Dict[str, Any]:
    with open(audit_path, "r", encoding="utf-8") as f:
        audit = json.load(f)

    meta = audit["metadata"]
    game = GAMES[meta["game"]]
    draw_id = int(meta["draw_id"])
    winning = game.validate_numbers(meta["winning_numbers"])
    nonce = int(meta["nonce"])
    stored = audit["winner_counts"]
    counts = WinnerCounts(
        game.tiers, tuple(int(stored[name]) for name in game.tier_names)
    )

    if "tickets" in audit:
        numbers = [t["numbers"] for t in audit["tickets"]]
        recounted, scanned = tally_winners(game, numbers, winning)
        if scanned != int(meta["total_tickets"]):
            raise AuditMismatchError(
                f"Ticket total mismatch: audit={meta['total_tickets']} "
                f"recomputed={scanned}"
            )
        if recounted != counts:
            raise AuditMismatchError(
                f"Winner counts mismatch: audit={counts.as_dict()} "
                f"recomputed={recounted.as_dict()}"
            )

    digest = compute_verification_hash(draw_id, winning, counts, nonce).hex()
    if digest != meta["verification_hash_hex"]:
        raise AuditMismatchError(
            f"Verification hash mismatch: audit={meta['verification_hash_hex']} "
            f"recomputed={digest}"
        )

    return {
        "ok": True,
        "game": game.key,
        "draw_id": draw_id,
        "winning_numbers": list(winning),
        "winner_counts": counts.as_dict(),
        "total_tickets": int(meta["total_tickets"]),
        "verification_hash_hex": digest,
    }


def verify_draw(
    program: GameProgram,
    game: GameSpec,
    draw_id: int,
    nonce: int,
    expected_hash: str | bytes,
) -> IndexResult:
    """Re-scan the public tickets of a finalized draw and check the published hash."""
    result = program.fetch_draw_result(draw_id)
    if result is None:
        raise AuditMismatchError(f"[{game.key}] draw #{draw_id} has no draw result")
    recomputed = index_draw(game, program, draw_id, result.winning_numbers, nonce)
    if isinstance(expected_hash, bytes):
        expected = expected_hash.hex()
    else:
        expected = expected_hash.lower()
    if recomputed.verification_hash_hex != expected:
        raise AuditMismatchError(
            f"[{game.key}] draw #{draw_id} hash mismatch: "
            f"expected={expected} recomputed={recomputed.verification_hash_hex}"
        )
    return recomputed
