import json

import pytest

from mazel_draw_bot.accounts import DrawResult
from mazel_draw_bot.games import MAIN, QUICK_PICK
from mazel_draw_bot.indexer import index_draw
from mazel_draw_bot.verify import (
    AuditMismatchError,
    build_audit,
    verify_audit,
    verify_draw,
    write_audit,
)

from conftest import FakeProgram, make_state, ticket

WINNING = (1, 2, 3, 4, 5, 6)


@pytest.fixture
def program(main_tickets):
    result = DrawResult(
        draw_id=7,
        winning_numbers=WINNING,
        is_explicitly_finalized=True,
        total_tickets=len(main_tickets),
        was_rolldown=False,
    )
    return FakeProgram(MAIN, make_state(), draw_result=result, tickets=main_tickets)


@pytest.fixture
def indexed(program):
    return index_draw(MAIN, program, 7, WINNING, nonce=2**64 - 1)


def test_audit_round_trip(tmp_path, program, indexed):
    path = str(tmp_path / "audit.json")
    write_audit(path, build_audit(MAIN, indexed, program.tickets))

    report = verify_audit(path)

    assert report["ok"]
    assert report["draw_id"] == 7
    assert report["verification_hash_hex"] == indexed.verification_hash_hex
    assert report["winner_counts"]["match6"] == 1
    assert report["total_tickets"] == 4


def test_nonce_is_stored_as_string(indexed):
    audit = build_audit(MAIN, indexed)
    assert audit["metadata"]["nonce"] == str(2**64 - 1)
    assert "tickets" not in audit


def test_ticket_order_is_deterministic(program, indexed):
    a = build_audit(MAIN, indexed, program.tickets)
    b = build_audit(MAIN, indexed, list(reversed(program.tickets)))
    assert a["tickets"] == b["tickets"]


def test_tampered_counts_are_detected(tmp_path, program, indexed):
    audit = build_audit(MAIN, indexed, program.tickets)
    audit["winner_counts"]["match6"] = 2
    path = str(tmp_path / "audit.json")
    write_audit(path, audit)
    with pytest.raises(AuditMismatchError, match="Winner counts"):
        verify_audit(path)


def test_tampered_hash_is_detected_without_tickets(tmp_path, indexed):
    audit = build_audit(MAIN, indexed)
    audit["metadata"]["nonce"] = "1"
    path = tmp_path / "audit.json"
    path.write_text(json.dumps(audit))
    with pytest.raises(AuditMismatchError, match="hash"):
        verify_audit(str(path))


def test_verify_draw_matches_published_hash(program, indexed):
    result = verify_draw(program, MAIN, 7, indexed.nonce, indexed.verification_hash)
    assert result.verification_hash == indexed.verification_hash


def test_verify_draw_detects_extra_ticket(program, indexed):
    program.tickets.append(ticket([1, 2, 3, 4, 5, 6], owner="late"))
    with pytest.raises(AuditMismatchError):
        verify_draw(program, MAIN, 7, indexed.nonce, indexed.verification_hash_hex)


def test_verify_draw_requires_a_result():
    program = FakeProgram(QUICK_PICK, make_state())
    with pytest.raises(AuditMismatchError, match="no draw result"):
        verify_draw(program, QUICK_PICK, 7, 0, "00" * 32)


def test_audit_from_counted_tickets_verifies(tmp_path, program):
    program.tickets.append(ticket([1, 2, 3, 4, 5, 47], owner="out-of-range"))
    result = index_draw(MAIN, program, 7, WINNING, nonce=3)
    assert len(result.tickets) == 4

    path = str(tmp_path / "audit.json")
    write_audit(path, build_audit(MAIN, result, result.tickets))

    assert verify_audit(path)["total_tickets"] == 4
