from __future__ import annotations

import argparse
import json
import logging
import os
import time
from typing import List, Optional

from dotenv import load_dotenv

from .alerts import AlertSink, build_alert_sink
from .config import DEFAULT_STATE_FILE, Settings
from .draw_state import DrawContext, DrawPhase
from .errors import DrawBotError
from .games import GAMES
from .indexer import generate_nonce, index_draw
from .oracle import SwitchboardOracle
from .orchestrator import run_tick
from .program import SolanaGameProgram
from .retry import RetryExecutor
from .rpc import RpcClient
from .state_store import StateStore
from .verify import build_audit, verify_audit, verify_draw, write_audit


def setup_logging(verbose: bool, level_name: str = "INFO") -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    if verbose:
        level = logging.DEBUG
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(
        rpc_url_override=args.rpc_url,
        mode_override=getattr(args, "mode", None),
        dry_run_override=True if getattr(args, "dry_run", False) else None,
    )


def _state_store(args: argparse.Namespace) -> StateStore:
    load_dotenv()
    path = args.state_file or os.getenv("STATE_FILE", "").strip()
    return StateStore(path or DEFAULT_STATE_FILE)


def _rpc(settings: Settings) -> RpcClient:
    return RpcClient(
        settings.rpc_url,
        timeout_s=settings.tx_confirm_timeout_ms / 1000.0,
        commitment=settings.commitment,
    )


def _alerts(settings: Settings) -> AlertSink:
    return build_alert_sink(settings.telegram_bot_token, settings.telegram_chat_id)


def build_program(
    settings: Settings, rpc: RpcClient, game_key: str
) -> SolanaGameProgram:
    game = GAMES[game_key]
    is_main = game_key == "main"
    program_id = settings.main_program_id if is_main else settings.qp_program_id
    return SolanaGameProgram(
        game=game,
        rpc=rpc,
        program_id=program_id,
        lottery_program_id=settings.main_program_id,
        authority=settings.authority_keypair,
        oracle=SwitchboardOracle(
            settings.switchboard_program_id, settings.switchboard_queue
        ),
        switchboard_queue=settings.switchboard_queue,
        priority_fee_micro_lamports=settings.priority_fee_micro_lamports,
        compute_unit_limit=settings.compute_unit_limit,
        skip_preflight=settings.skip_preflight,
        confirm_timeout_s=settings.tx_confirm_timeout_ms / 1000.0,
        page_size=settings.gpa_batch_size,
    )


def build_contexts(
    settings: Settings, rpc: RpcClient, alerts: AlertSink
) -> List[DrawContext]:
    contexts = []
    for key in settings.games:
        is_main = key == "main"
        contexts.append(
            DrawContext(
                game=GAMES[key],
                program=build_program(settings, rpc, key),
                retry=RetryExecutor(settings.max_retries, settings.retry_delay_ms),
                alerts=alerts,
                dry_run=settings.dry_run,
                commit_execute_delay_s=settings.commit_execute_delay_ms / 1000.0,
                ticket_sale_cutoff=(
                    settings.main_ticket_sale_cutoff
                    if is_main
                    else settings.qp_ticket_sale_cutoff
                ),
                commit_timeout=(
                    settings.main_commit_timeout
                    if is_main
                    else settings.qp_commit_timeout
                ),
                nonce_seed=settings.indexer_nonce,
            )
        )
    return contexts


def _tick_once(settings: Settings, store: StateStore, alerts: AlertSink) -> int:
    log = logging.getLogger("tick")
    store.record_poll()
    if store.is_paused():
        log.info("Bot is paused; skipping tick.")
        return 0

    rpc = _rpc(settings)
    try:
        results = run_tick(build_contexts(settings, rpc, alerts))
    finally:
        rpc.close()

    failed = 0
    for draw in results:
        store.record_run(draw)
        if draw.phase == DrawPhase.ERROR:
            failed += 1
        log.info(
            "[%s] draw #%d -> %s%s",
            draw.program,
            draw.draw_id,
            draw.phase.value,
            f" ({draw.skip_reason})" if draw.skip_reason else "",
        )
    return 1 if failed else 0


def cmd_tick(args: argparse.Namespace) -> int:
    settings = _settings(args)
    store = _state_store(args)
    return _tick_once(settings, store, _alerts(settings))


def cmd_run(args: argparse.Namespace) -> int:
    settings = _settings(args)
    store = _state_store(args)
    alerts = _alerts(settings)
    log = logging.getLogger("run")
    log.info(
        "Starting scheduler: every %ds, mode=%s, dry_run=%s",
        settings.tick_interval_s,
        settings.mode,
        settings.dry_run,
    )

    try:
        while True:
            try:
                _tick_once(settings, store, alerts)
            except DrawBotError as e:
                log.error("Tick failed: %s", e)
                alerts.send("error", "Scheduler tick failed", {"error": str(e)})
            for _ in range(max(1, settings.tick_interval_s)):
                if store.consume_trigger():
                    log.info("Manual trigger received; running now.")
                    break
                time.sleep(1)
    except KeyboardInterrupt:
        log.info("Stopped.")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    settings = _settings(args)
    store = _state_store(args)
    data = store.load()
    rpc = _rpc(settings)
    try:
        print("========================================")
        print(f"Bot paused    : {data['paused']}")
        for key in settings.games:
            program = build_program(settings, rpc, key)
            state = program.fetch_state()
            known = data["last_known_phase"].get(key) or {}
            print("----------------------------------------")
            print(f"{program.game.label}")
            print(f"Draw id       : {state.current_draw_id}")
            print(f"In progress   : {state.is_draw_in_progress}")
            print(f"Paused        : {state.is_paused}")
            print(f"Funded        : {state.is_funded}")
            print(f"Jackpot       : {state.jackpot_balance}")
            print(f"Tickets       : {state.current_draw_tickets}")
            print(f"Next draw     : {state.next_draw_timestamp}")
            last = f"{known.get('phase', '-')} (draw #{known.get('draw_id', '-')})"
            print(f"Last phase    : {last}")
        print("========================================")
    finally:
        rpc.close()
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    data = _state_store(args).load()
    stats = {
        "poll_count": data["poll_count"],
        "run_statistics": data["run_statistics"],
    }
    print(json.dumps(stats, indent=2))
    return 0


def cmd_pause(args: argparse.Namespace) -> int:
    _state_store(args).set_paused(True)
    print("Bot paused. Scheduled ticks will be skipped until resumed.")
    return 0


def cmd_resume(args: argparse.Namespace) -> int:
    _state_store(args).set_paused(False)
    print("Bot resumed.")
    return 0


def cmd_trigger(args: argparse.Namespace) -> int:
    _state_store(args).request_trigger()
    print("Trigger requested. The running scheduler will tick immediately.")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    settings = _settings(args)
    print(json.dumps(settings.summary(), indent=2))
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    settings = _settings(args)
    rpc = _rpc(settings)
    try:
        slot = rpc.get_slot()
        finalized_slot = rpc.get_slot("finalized")
        block_time = rpc.get_block_time(finalized_slot)
        health = rpc.get_health()
    finally:
        rpc.close()
    print(f"RPC health    : {health}")
    print(f"Current slot  : {slot}")
    shown_time = "-" if block_time is None else block_time
    print(f"Finalized     : {finalized_slot} (block time {shown_time})")
    return 0 if health == "ok" else 1


def cmd_force_finalize(args: argparse.Namespace) -> int:
    settings = _settings(args)
    log = logging.getLogger("force-finalize")
    rpc = _rpc(settings)
    try:
        program = build_program(settings, rpc, args.game)
        draw_id = args.draw_id
        if draw_id is None:
            draw_id = program.fetch_state().current_draw_id
        log.warning(
            "[%s] Force-finalizing draw #%d: %s", args.game, draw_id, args.reason
        )
        if settings.dry_run:
            print(f"DRY RUN: would force-finalize {args.game} draw #{draw_id}")
            return 0
        receipt = program.force_finalize_draw(draw_id, args.reason)
    finally:
        rpc.close()
    _alerts(settings).send(
        "warn",
        f"[{args.game}] draw #{draw_id} force-finalized with zero winners",
        {"reason": args.reason, "signature": receipt.signature},
    )
    print(f"Force-finalized {args.game} draw #{draw_id}: {receipt.signature}")
    return 0


def cmd_index(args: argparse.Namespace) -> int:
    settings = _settings(args)
    game = GAMES[args.game]
    rpc = _rpc(settings)
    try:
        program = build_program(settings, rpc, args.game)
        result = program.fetch_draw_result(args.draw_id)
        if result is None:
            raise SystemExit(f"No draw result for {args.game} draw #{args.draw_id}.")
        nonce = args.nonce
        if nonce is None:
            nonce = generate_nonce(settings.indexer_nonce)
        index = index_draw(game, program, args.draw_id, result.winning_numbers, nonce)
    finally:
        rpc.close()

    write_audit(args.out, build_audit(game, index, index.tickets))

    print("========================================")
    print(f"{game.label} draw #{index.draw_id}")
    print("========================================")
    print(f"Winning numbers: {', '.join(str(n) for n in index.winning_numbers)}")
    print(f"Tickets        : {index.total_tickets_scanned}")
    for tier, count in index.winner_counts.as_dict().items():
        print(f"{tier:<15}: {count}")
    print(f"Nonce          : {index.nonce}")
    print(f"Hash           : {index.verification_hash_hex}")
    print("----------------------------------------")
    print(f"Wrote audit: {args.out}")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    result = verify_audit(args.audit)
    print("AUDIT VERIFIED")
    print(f"Game          : {result['game']}")
    print(f"Draw id       : {result['draw_id']}")
    print(f"Winning       : {result['winning_numbers']}")
    print(f"Winner counts : {result['winner_counts']}")
    print(f"Hash          : {result['verification_hash_hex']}")
    return 0


def cmd_verify_draw(args: argparse.Namespace) -> int:
    settings = _settings(args)
    game = GAMES[args.game]
    rpc = _rpc(settings)
    try:
        program = build_program(settings, rpc, args.game)
        result = verify_draw(program, game, args.draw_id, args.nonce, args.hash)
    finally:
        rpc.close()

    print("DRAW VERIFIED")
    print(f"Game          : {game.key}")
    print(f"Draw id       : {result.draw_id}")
    print(f"Winning       : {list(result.winning_numbers)}")
    print(f"Tickets       : {result.total_tickets_scanned}")
    print(f"Winner counts : {result.winner_counts.as_dict()}")
    print(f"Hash          : {result.verification_hash_hex}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mazel-draw-bot",
        description=(
            "Draw lifecycle orchestrator for the Main Lottery and Quick Pick Express."
        ),
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--state-file", default=None, help="Override STATE_FILE.")

    sub = p.add_subparsers(dest="cmd", required=True)

    for name, func, text in (
        ("tick", cmd_tick, "Run one lifecycle pass for the configured games."),
        ("run", cmd_run, "Tick every TICK_INTERVAL_S seconds until interrupted."),
    ):
        s = sub.add_parser(name, help=text)
        s.add_argument("--mode", choices=("both", "main-only", "qp-only"), default=None)
        s.add_argument(
            "--dry-run", action="store_true", help="Read and decide, never send."
        )
        s.set_defaults(func=func)

    for name, func, text in (
        ("status", cmd_status, "Show on-chain state and last known phase."),
        ("stats", cmd_stats, "Show run statistics."),
        ("pause", cmd_pause, "Skip ticks until resumed."),
        ("resume", cmd_resume, "Resume scheduled ticks."),
        ("trigger", cmd_trigger, "Ask the scheduler to tick now."),
        ("config", cmd_config, "Print the redacted configuration."),
        ("health", cmd_health, "Check the RPC endpoint."),
    ):
        sub.add_parser(name, help=text).set_defaults(func=func)

    ff = sub.add_parser(
        "force-finalize", help="Last resort: finalize a draw with zero winners."
    )
    ff.add_argument("--game", required=True, choices=sorted(GAMES))
    ff.add_argument(
        "--draw-id", type=int, default=None, help="Defaults to the current draw."
    )
    ff.add_argument("--reason", required=True)
    ff.add_argument("--dry-run", action="store_true")
    ff.set_defaults(func=cmd_force_finalize)

    ix = sub.add_parser("index", help="Scan a draw's tickets and write an audit JSON.")
    ix.add_argument("--game", required=True, choices=sorted(GAMES))
    ix.add_argument("--draw-id", required=True, type=int)
    ix.add_argument(
        "--nonce", type=int, default=None, help="Published nonce to reproduce a hash."
    )
    ix.add_argument("--out", default="audit.json", help="Audit output JSON path.")
    ix.set_defaults(func=cmd_index)

    v = sub.add_parser(
        "verify", help="Verify an existing audit.json deterministically."
    )
    v.add_argument("--audit", required=True, help="Path to audit.json.")
    v.set_defaults(func=cmd_verify)

    vd = sub.add_parser(
        "verify-draw",
        help="Re-scan a finalized draw on chain and check its published hash.",
    )
    vd.add_argument("--game", required=True, choices=sorted(GAMES))
    vd.add_argument("--draw-id", required=True, type=int)
    vd.add_argument(
        "--nonce", required=True, type=int, help="Nonce published with the draw."
    )
    vd.add_argument("--hash", required=True, help="Published verification hash (hex).")
    vd.set_defaults(func=cmd_verify_draw)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv()
    setup_logging(args.verbose, os.getenv("LOG_LEVEL", "INFO"))
    raise SystemExit(args.func(args))
