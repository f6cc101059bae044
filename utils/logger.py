from __future__ import annotations
import logging
from logging.handlers import RotatingFileHandler
import os, functools, time, inspect
from pathlib import Path

_DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", "1048576"))
_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "3"))

class _LoggerManager:
    """
    Consola en el root logger + un RotatingFileHandler por módulo en LOG_DIR.
    LOG_TO_FILE=false desactiva los ficheros (tests, contenedores).
    """
    def __init__(self) -> None:
        self._configured = False
        self._module_handlers: dict[str, logging.Handler] = {}
        self._log_dir = os.getenv("LOG_DIR", "./logs")
        self._to_file = os.getenv("LOG_TO_FILE", "true").lower() == "true"

    def _ensure(self) -> None:
        if self._configured:
            return

        level = getattr(logging, _DEFAULT_LEVEL, logging.INFO)
        fmt = logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

        root = logging.getLogger()
        root.setLevel(level)
        if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
            sh = logging.StreamHandler()
            sh.setLevel(level); sh.setFormatter(fmt)
            root.addHandler(sh)

        if self._to_file:
            try:
                Path(self._log_dir).mkdir(parents=True, exist_ok=True)
            except OSError:
                self._to_file = False
        self._configured = True

    def setup_logger(self, name: str) -> logging.Logger:
        self._ensure()
        logger = logging.getLogger(name)

        if self._to_file and name not in self._module_handlers:
            safe_name = name.replace(".", "_").replace("/", "_")
            file_path = os.path.join(self._log_dir, f"{safe_name}.log")
            try:
                fh = RotatingFileHandler(file_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8")
                fh.setLevel(getattr(logging, _DEFAULT_LEVEL, logging.INFO))
                fh.setFormatter(logging.Formatter(
                    fmt="%(asctime)s | %(levelname)s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S"
                ))
                self._module_handlers[name] = fh
                logger.addHandler(fh)
                logger.propagate = True  # conserva salida a consola
            except OSError:
                pass

        return logger

logger_manager = _LoggerManager()

def log_function(func):
    """Traza entrada/salida y duración. Vale para funciones normales y corrutinas."""
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = logger_manager.setup_logger(func.__module__)
            logger.debug(f"→ {func.__name__} args={args} kwargs={kwargs}")
            t0 = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                logger.debug(f"← {func.__name__} ({(time.perf_counter()-t0)*1000:.1f} ms)")
                return result
            except Exception as e:
                logger.debug(f"✗ {func.__name__} ({(time.perf_counter()-t0)*1000:.1f} ms): {e}")
                raise
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logger_manager.setup_logger(func.__module__)
        logger.debug(f"→ {func.__name__} args={args} kwargs={kwargs}")
        t0 = time.perf_counter()
        try:
            result = func(*args, **kwargs)
            logger.debug(f"← {func.__name__} ({(time.perf_counter()-t0)*1000:.1f} ms)")
            return result
        except Exception as e:
            logger.exception(f"✗ {func.__name__}: {e}")
            raise
    return wrapper
