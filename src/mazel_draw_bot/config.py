from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import base58
from dotenv import load_dotenv
from solders.keypair import Keypair

from .errors import ConfigError
from .project_constants import (
    DRAW_COMMIT_TIMEOUT,
    QP_TICKET_SALE_CUTOFF,
    SWITCHBOARD_PROGRAM_ID,
    TICKET_SALE_CUTOFF,
)

MODES = ("both", "main-only", "qp-only")
COMMITMENTS = ("processed", "confirmed", "finalized")
DEFAULT_STATE_FILE = ".mazel-draw-bot.json"


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    authority_keypair: Keypair
    main_program_id: str
    qp_program_id: str
    switchboard_queue: str
    switchboard_program_id: str = SWITCHBOARD_PROGRAM_ID
    commitment: str = "confirmed"
    mode: str = "both"
    commit_execute_delay_ms: int = 4000
    max_retries: int = 3
    retry_delay_ms: int = 2000
    dry_run: bool = False
    gpa_batch_size: int = 1000
    indexer_nonce: Optional[int] = None
    log_level: str = "INFO"
    priority_fee_micro_lamports: int = 1000
    compute_unit_limit: Optional[int] = None
    skip_preflight: bool = False
    tx_confirm_timeout_ms: int = 60000
    main_commit_timeout: int = DRAW_COMMIT_TIMEOUT
    qp_commit_timeout: int = DRAW_COMMIT_TIMEOUT
    main_ticket_sale_cutoff: int = TICKET_SALE_CUTOFF
    qp_ticket_sale_cutoff: int = QP_TICKET_SALE_CUTOFF
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    state_file: str = DEFAULT_STATE_FILE
    tick_interval_s: int = 60

    @property
    def games(self) -> Tuple[str, ...]:
        if self.mode == "main-only":
            return ("main",)
        if self.mode == "qp-only":
            return ("quickpick",)
        return ("main", "quickpick")

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None,
        mode_override: str | None = None,
        dry_run_override: bool | None = None,
    ) -> "Settings":
        load_dotenv()

        rpc_url = rpc_url_override or _rpc_url_from_env()
        mode = mode_override or _env("MODE", "both")
        if mode not in MODES:
            raise ConfigError(f"MODE must be one of {', '.join(MODES)}, got {mode!r}")
        commitment = _env("COMMITMENT", "confirmed")
        if commitment not in COMMITMENTS:
            raise ConfigError(
                f"COMMITMENT must be one of {', '.join(COMMITMENTS)}, "
                f"got {commitment!r}"
            )

        return Settings(
            rpc_url=rpc_url,
            authority_keypair=_authority_from_env(),
            main_program_id=_required_pubkey("MAIN_PROGRAM_ID"),
            qp_program_id=_required_pubkey("QP_PROGRAM_ID"),
            switchboard_queue=_required_pubkey("SWITCHBOARD_QUEUE"),
            switchboard_program_id=_env(
                "SWITCHBOARD_PROGRAM_ID", SWITCHBOARD_PROGRAM_ID
            ),
            commitment=commitment,
            mode=mode,
            commit_execute_delay_ms=_int("COMMIT_EXECUTE_DELAY_MS", 4000),
            max_retries=_int("MAX_RETRIES", 3),
            retry_delay_ms=_int("RETRY_DELAY_MS", 2000),
            dry_run=(
                _bool("DRY_RUN", False)
                if dry_run_override is None
                else dry_run_override
            ),
            gpa_batch_size=_int("GPA_BATCH_SIZE", 1000),
            indexer_nonce=_optional_int("INDEXER_NONCE"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            priority_fee_micro_lamports=_int("PRIORITY_FEE_MICRO_LAMPORTS", 1000),
            compute_unit_limit=_optional_int("COMPUTE_UNIT_LIMIT"),
            skip_preflight=_bool("SKIP_PREFLIGHT", False),
            tx_confirm_timeout_ms=_int("TX_CONFIRM_TIMEOUT_MS", 60000),
            main_commit_timeout=_int("MAIN_COMMIT_TIMEOUT", DRAW_COMMIT_TIMEOUT),
            qp_commit_timeout=_int("QP_COMMIT_TIMEOUT", DRAW_COMMIT_TIMEOUT),
            main_ticket_sale_cutoff=_int("MAIN_TICKET_SALE_CUTOFF", TICKET_SALE_CUTOFF),
            qp_ticket_sale_cutoff=_int("QP_TICKET_SALE_CUTOFF", QP_TICKET_SALE_CUTOFF),
            telegram_bot_token=_env("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_id=_env("TELEGRAM_CHAT_ID") or None,
            state_file=_env("STATE_FILE", DEFAULT_STATE_FILE),
            tick_interval_s=_int("TICK_INTERVAL_S", 60),
        )

    def summary(self) -> Dict[str, Any]:
        """Configuration with secrets redacted, safe to log or print."""
        return {
            "rpc_url": redact_url(self.rpc_url),
            "authority": str(self.authority_keypair.pubkey()),
            "main_program_id": self.main_program_id,
            "qp_program_id": self.qp_program_id,
            "switchboard_queue": self.switchboard_queue,
            "switchboard_program_id": self.switchboard_program_id,
            "commitment": self.commitment,
            "mode": self.mode,
            "dry_run": self.dry_run,
            "commit_execute_delay_ms": self.commit_execute_delay_ms,
            "max_retries": self.max_retries,
            "retry_delay_ms": self.retry_delay_ms,
            "gpa_batch_size": self.gpa_batch_size,
            "indexer_nonce": "fixed" if self.indexer_nonce is not None else "random",
            "priority_fee_micro_lamports": self.priority_fee_micro_lamports,
            "compute_unit_limit": self.compute_unit_limit,
            "skip_preflight": self.skip_preflight,
            "tx_confirm_timeout_ms": self.tx_confirm_timeout_ms,
            "main_commit_timeout": self.main_commit_timeout,
            "qp_commit_timeout": self.qp_commit_timeout,
            "main_ticket_sale_cutoff": self.main_ticket_sale_cutoff,
            "qp_ticket_sale_cutoff": self.qp_ticket_sale_cutoff,
            "telegram": (
                "configured"
                if self.telegram_bot_token and self.telegram_chat_id
                else "disabled"
            ),
            "state_file": self.state_file,
            "tick_interval_s": self.tick_interval_s,
        }


def load_keypair(value: str) -> Keypair:
    """Keypair from a JSON byte array (Solana CLI format) or a base58 secret key."""
    value = value.strip()
    try:
        if value.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(value)))
        return Keypair.from_bytes(base58.b58decode(value))
    except ValueError as e:
        raise ConfigError(f"Invalid authority keypair: {e}") from e


def redact_url(url: str) -> str:
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _rpc_url_from_env() -> str:
    env_rpc = _env("RPC_URL")
    if env_rpc:
        return env_rpc

    helius_key = _env("HELIUS_API_KEY")
    if not helius_key:
        raise ConfigError(
            "Missing HELIUS_API_KEY (or RPC_URL). Put it in .env or export it."
        )

    return f"https://mainnet.helius-rpc.com/?api-key={helius_key}"


def _authority_from_env() -> Keypair:
    inline = _env("AUTHORITY_KEYPAIR_JSON")
    if inline:
        return load_keypair(inline)

    path = _env("AUTHORITY_KEYPAIR_PATH")
    if not path:
        raise ConfigError("Missing AUTHORITY_KEYPAIR_JSON (or AUTHORITY_KEYPAIR_PATH).")
    try:
        with open(os.path.expanduser(path), "r", encoding="utf-8") as f:
            return load_keypair(f.read())
    except OSError as e:
        raise ConfigError(f"Cannot read AUTHORITY_KEYPAIR_PATH {path}: {e}") from e


def _required_pubkey(name: str) -> str:
    value = _env(name)
    if not value:
        raise ConfigError(f"Missing {name}.")
    try:
        raw = base58.b58decode(value)
    except ValueError as e:
        raise ConfigError(f"{name} is not base58: {e}") from e
    if len(raw) != 32:
        raise ConfigError(f"{name} is not a 32-byte public key")
    return value


def _int(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _optional_int(name: str) -> Optional[int]:
    raw = _env(name)
    if not raw:
        return None
    return _int(name, 0)


def _bool(name: str, default: bool) -> bool:
    raw = _env(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")
