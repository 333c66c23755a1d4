# main.py
from __future__ import annotations
import os
import sys
import time
import signal
import threading

# ---- carga .env si existe ----
from dotenv import load_dotenv
load_dotenv()

# ---- imports del proyecto ----
from controllers.command_controller import CommandController, ConsoleReader
from orchestrators.session_controller import SessionController
from services.context import AppContext
from utils.config import load_bot_config
from utils.exceptions import SniperError
from utils.log_config import logger_manager
from utils.wallets import load_accounts, reserve_account, trading_accounts

logger = logger_manager.setup_logger(__name__)

ENABLE_CONSOLE = os.getenv("ENABLE_CONSOLE", "true").lower() == "true"


# ------------------------------
# Lanzadores
# ------------------------------
def start_telegram_bot(commands: CommandController, stop_event: threading.Event) -> None:
    """
    Arranca el bot v20+ en un hilo secundario *creando la Application y el loop en ese hilo*.
    Desactiva signal handlers (solo válidos en el hilo principal).
    """
    start_telegram_bot.instance = None  # type: ignore[attr-defined]

    def _run():
        import asyncio
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            from services.telegram_bot import TelegramBot
            bot = TelegramBot(commands)
            start_telegram_bot.instance = bot  # type: ignore[attr-defined]
            bot.run()
        except Exception as e:
            logger.error(f"Fallo en TelegramBot: {e}")
        finally:
            loop.close()

    t = threading.Thread(target=_run, name="Telegram", daemon=True)
    t.start()

    def _watch():
        stop_event.wait()
        bot = getattr(start_telegram_bot, "instance", None)
        if bot is not None:
            try:
                bot.stop_running()
            except RuntimeError as e:
                logger.error(f"Error al parar TelegramBot: {e}")

    threading.Thread(target=_watch, name="TelegramStop", daemon=True).start()


def build_controller() -> SessionController:
    bot_config = load_bot_config()
    all_accounts = load_accounts()
    accounts = trading_accounts(all_accounts, bot_config.thread_count)
    reserve = reserve_account(all_accounts)
    context = AppContext.from_env(bot_config.venue)
    logger.info(
        f"Config: {bot_config.thread_count} sesiones, límite {bot_config.spend_limit} SOL, "
        f"venue={bot_config.venue.value}, objetivo={bot_config.market_cap_threshold or '∞'}"
    )
    if reserve is not None:
        logger.info(f"Cuenta de reserva {reserve.name} ({reserve.address}): destino de recogida por defecto")
    return SessionController(bot_config, accounts, context, reserve=reserve)


# ------------------------------
# Main
# ------------------------------
def main() -> int:
    logger.info("🚀 Iniciando sniper...")
    try:
        controller = build_controller()
    except SniperError as e:
        logger.error(f"❌ Configuración inválida: {e}")
        return 2

    stop_all_evt = threading.Event()
    commands = CommandController(controller)

    def shutdown(*_):
        logger.info("🛑 Señal de apagado recibida, deteniendo sesiones...")
        controller.stop()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    if ENABLE_CONSOLE:
        ConsoleReader(commands).start()
    if os.getenv("TELEGRAM_TOKEN"):
        start_telegram_bot(commands, stop_all_evt)

    try:
        report = controller.run()
    except SniperError as e:
        logger.error(f"❌ Ejecución abortada: {e}")
        return 1
    finally:
        stop_all_evt.set()
        # dar un poco de tiempo a los hilos a cerrarse bien
        time.sleep(0.8)

    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
