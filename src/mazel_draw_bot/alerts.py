from __future__ import annotations

import html
import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

import httpx

log = logging.getLogger("alerts")

_LEVEL_PREFIX = {"info": "ℹ️", "warn": "⚠️", "error": "❌", "fatal": "🚨"}
_LOG_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


Context = Optional[Mapping[str, Any]]


class AlertSink(Protocol):
    def send(self, level: str, message: str, context: Context = None) -> None: ...


def _escape(value: Any) -> str:
    return html.escape(str(value), quote=False)


def format_alert(level: str, message: str, context: Context = None) -> str:
    """Telegram HTML rendering of one alert."""
    prefix = _LEVEL_PREFIX.get(level, "")
    text = f"{prefix} <b>[{level.upper()}]</b>\n{_escape(message)}"
    details = [
        f"  <code>{_escape(k)}</code>: {_escape(v)}"
        for k, v in (context or {}).items()
        if v is not None
    ]
    if details:
        text += "\n\n<b>Details:</b>\n" + "\n".join(details)
    return text


class LogAlertSink:
    """Operator channel of last resort: the process log."""

    def send(self, level: str, message: str, context: Context = None) -> None:
        level_no = _LOG_LEVELS.get(level, logging.WARNING)
        log.log(level_no, "ALERT %s %s", message, dict(context or {}))


class TelegramAlertSink:
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        timeout_s: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        self.chat_id = chat_id
        self.client = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self.client.close()

    def send(self, level: str, message: str, context: Context = None) -> None:
        self.send_text(format_alert(level, message, context))

    def send_text(self, text: str) -> None:
        # Alert delivery must never take the draw down with it.
        try:
            resp = self.client.post(
                self.url,
                json={
                    "chat_id": self.chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
            )
        except httpx.HTTPError as e:
            log.error("Telegram send failed: %s", e)
            return
        if resp.status_code >= 400:
            log.error("Telegram send failed: HTTP %d: %s", resp.status_code, resp.text)


def build_alert_sink(bot_token: Optional[str], chat_id: Optional[str]) -> AlertSink:
    if bot_token and chat_id:
        return TelegramAlertSink(bot_token, chat_id)
    return LogAlertSink()


def log_phase(
    program: str,
    draw_id: int,
    phase: str,
    status: str,
    alerts: Optional[AlertSink] = None,
    **details: Any,
) -> None:
    """
    Log one phase transition. Errors are escalated to `alerts` as well.

    status is one of start, success, skip, retry, error.
    """
    entry: Dict[str, Any] = {
        "program": program,
        "draw_id": draw_id,
        "phase": phase,
        "status": status,
    }
    entry.update(details)
    plog = logging.getLogger(f"draw.{program}")
    if status == "error":
        plog.error("[%s] draw #%d %s: %s %s", program, draw_id, phase, status, details)
        if alerts is not None:
            alerts.send("error", f"[{program}] draw #{draw_id} {phase} failed", entry)
    elif status == "retry":
        plog.warning("[%s] draw #%d %s: retrying %s", program, draw_id, phase, details)
    elif status == "skip":
        plog.info("[%s] draw #%d %s: skipped %s", program, draw_id, phase, details)
    else:
        plog.info("[%s] draw #%d %s: %s %s", program, draw_id, phase, status, details)


def log_tx(
    program: str, instruction: str, signature: str, duration_ms: Optional[int] = None
) -> None:
    plog = logging.getLogger(f"draw.{program}")
    if duration_ms is None:
        plog.info("[%s] tx %s: %s", program, instruction, signature)
    else:
        plog.info("[%s] tx %s: %s (%dms)", program, instruction, signature, duration_ms)


def draw_complete_message(
    label: str,
    draw_id: int,
    winning_numbers: Sequence[int],
    total_tickets: int,
    winner_counts: Mapping[str, int],
) -> str:
    winners = ", ".join(f"{tier}: {n}" for tier, n in winner_counts.items() if n > 0)
    return (
        f"{label} draw #{draw_id} complete. "
        f"Winning numbers: {', '.join(str(n) for n in winning_numbers)}. "
        f"Tickets: {total_tickets}. "
        + (f"Winners: {winners}." if winners else "No winners this draw.")
    )
