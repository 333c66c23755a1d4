import os
from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from controllers.command_controller import CommandController, HELP
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)


class TelegramBot:
    """Mismos comandos que la consola: /stop /config /collect /sell /set."""

    def __init__(self, commands: CommandController, token: str | None = None, chat_id: str | None = None) -> None:
        self.token = token or os.getenv("TELEGRAM_TOKEN")
        if not self.token:
            raise RuntimeError("Falta TELEGRAM_TOKEN")
        allowed = chat_id or os.getenv("TELEGRAM_CHAT_ID")
        self.allowed_chat = int(allowed) if allowed else None
        self.commands = commands

        self.application = Application.builder().token(self.token).build()
        self.application.add_handler(CommandHandler("start", self.cmd_start))
        for name in ("stop", "config", "collect", "sell", "set"):
            self.application.add_handler(CommandHandler(name, self.cmd_control))

    def _authorized(self, update: Update) -> bool:
        chat = update.effective_chat
        return self.allowed_chat is None or (chat is not None and chat.id == self.allowed_chat)

    async def cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(f"Bot listo. {HELP}")

    async def cmd_control(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._authorized(update):
            logger.warning(f"Comando de chat no autorizado: {update.effective_chat.id if update.effective_chat else '?'}")
            return
        text = update.message.text or ""
        # "/set@MiBot buy_interval 3" -> "set buy_interval 3"
        head, _, rest = text.lstrip("/").partition(" ")
        line = f"{head.split('@', 1)[0]} {rest}".strip()
        reply = self.commands.handle(line)
        await update.message.reply_text(reply)

    def run(self):
        logger.info("TelegramBot iniciando...")
        # main.py crea el loop en el hilo del bot; no instales signal handlers aquí
        self.application.run_polling(stop_signals=None, close_loop=False)

    def stop_running(self):
        self.application.stop_running()
