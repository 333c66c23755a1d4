from __future__ import annotations
import functools
import logging
import os
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", "1048576"))
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "3"))
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() == "true"
LOG_DIR = os.getenv("LOG_DIR", "./logs")

_DATEFMT = "%Y-%m-%d %H:%M:%S"
# las sesiones escriben desde varios hilos: el nombre del hilo va siempre
_CONSOLE_FMT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(name)s | %(message)s"
_FILE_FMT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(message)s"


class _LoggerManager:
    """
    Consola en el root logger + un fichero rotativo por módulo en LOG_DIR.
    ``setup_logger`` es idempotente: cada módulo lo llama al importarse.
    """

    def __init__(self, log_dir: str = LOG_DIR, to_file: bool = LOG_TO_FILE) -> None:
        self.log_dir = Path(log_dir)
        self.to_file = to_file
        self.level = getattr(logging, LOG_LEVEL, logging.INFO)
        self._files: Dict[str, Optional[logging.Handler]] = {}
        self._root_ready = False

    def _init_root(self) -> None:
        root = logging.getLogger()
        root.setLevel(self.level)
        if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
            console = logging.StreamHandler()
            console.setLevel(self.level)
            console.setFormatter(logging.Formatter(_CONSOLE_FMT, datefmt=_DATEFMT))
            root.addHandler(console)
        self._root_ready = True

    def _file_handler(self, name: str) -> Optional[logging.Handler]:
        path = self.log_dir / f"{name.replace('.', '_')}.log"
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT,
                                          encoding="utf-8")
        except OSError as e:
            logging.getLogger(__name__).warning(f"Sin log en fichero para {name} ({path}): {e}")
            return None
        handler.setLevel(self.level)
        handler.setFormatter(logging.Formatter(_FILE_FMT, datefmt=_DATEFMT))
        return handler

    def setup_logger(self, name: str) -> logging.Logger:
        if not self._root_ready:
            self._init_root()
        logger = logging.getLogger(name)
        if self.to_file and name not in self._files:
            handler = self._file_handler(name)
            self._files[name] = handler
            if handler is not None:
                logger.addHandler(handler)
        return logger


logger_manager = _LoggerManager()


def log_function(func):
    """Traza entrada/salida en DEBUG; las excepciones se registran y se propagan."""
    log = logger_manager.setup_logger(func.__module__)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        name = func.__qualname__
        log.debug(f"→ {name} args={args[1:]} kwargs={kwargs}")
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            log.debug(f"✗ {name}: {type(e).__name__}: {e}")
            raise
        log.debug(f"← {name} ({(time.perf_counter() - started) * 1000:.1f} ms)")
        return result

    return wrapper
