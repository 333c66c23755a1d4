from __future__ import annotations
import os, requests
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")
SOLSCAN_BASE = os.getenv("SOLSCAN_BASE", "https://solscan.io")

# Markdown v1: solo estos caracteres necesitan escape
_MD_ESCAPES = str.maketrans({c: "\\" + c for c in "\\_*`[]"})


def _esc(s: str) -> str:
    return (s or "").translate(_MD_ESCAPES)


class TelegramService:
    """Notificaciones salientes (sin estado, vía Bot API por HTTP)."""

    def __init__(self, token: str | None = None, chat_id: str | None = None) -> None:
        self.token = token or TELEGRAM_TOKEN
        chat = chat_id or TELEGRAM_CHAT_ID
        self.chat_id = int(chat) if chat else None
        self.api_base = f"https://api.telegram.org/bot{self.token}" if self.token else None
        if not self.enabled:
            logger.debug("TelegramService sin TOKEN o CHAT_ID; se desactivan envíos.")

    @property
    def enabled(self) -> bool:
        return bool(self.api_base and self.chat_id)

    def _send(self, text: str) -> None:
        if not self.enabled:
            return
        payload = {"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"}
        try:
            requests.post(f"{self.api_base}/sendMessage", json=payload, timeout=10).raise_for_status()
        except requests.RequestException as e:
            logger.error(f"❌ Telegram no entregó el mensaje: {e}")

    def notify(self, text: str) -> None:
        self._send(_esc(text))

    @log_function
    def notify_listing(self, mint: str, name: str, symbol: str) -> None:
        msg = (
            f"🎯 *Listado detectado*\n\n"
            f"*Token:* {_esc(name)} ({_esc(symbol)})\n"
            f"*Mint:* `{mint}`\n"
            f"*Solscan:* {SOLSCAN_BASE}/token/{mint}"
        )
        self._send(msg)

    @log_function
    def notify_run_finished(self, finished: int, failed: int, spent: float) -> None:
        icon = "✅" if not failed else "⚠️"
        msg = (
            f"{icon} *Ejecución terminada*\n\n"
            f"*Sesiones OK:* {finished}\n"
            f"*Sesiones con error:* {failed}\n"
            f"*SOL gastado:* {spent:.4f}"
        )
        self._send(msg)
