from utils.logger import logger_manager, log_function

import os

# Errores de sesión también por Telegram (si hay token configurado)
NOTIFY_ERRORS = os.getenv("NOTIFY_ERRORS", "false").lower() == "true"

__all__ = ["logger_manager", "log_function", "NOTIFY_ERRORS"]
