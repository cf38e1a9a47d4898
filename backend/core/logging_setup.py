from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(settings) -> Optional[Path]:
    """Configure root logging once: console always, rotating file when LOG_FILE is set."""
    level = getattr(logging, settings.log_level, logging.INFO)
    fmt = logging.Formatter(_FORMAT)

    logger = logging.getLogger()  # root
    logger.setLevel(level)

    handlers: list[logging.Handler] = []
    if not any(getattr(h, "_pastry_console", False) for h in logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        console._pastry_console = True  # type: ignore[attr-defined]
        logger.addHandler(console)
        handlers.append(console)

    log_path: Optional[Path] = None
    if settings.log_file:
        log_path = Path(settings.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # avoid duplicate handlers on reload
        if not any(
            isinstance(h, logging.handlers.RotatingFileHandler)
            and getattr(h, "baseFilename", "") == str(log_path.resolve())
            for h in logger.handlers
        ):
            fh = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
            fh.setFormatter(fmt)
            fh.setLevel(level)
            logger.addHandler(fh)
            handlers.append(fh)

    # also wire uvicorn loggers (if present)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(name)
        lg.setLevel(level)
        for h in handlers:
            if h not in lg.handlers and isinstance(h, logging.handlers.RotatingFileHandler):
                lg.addHandler(h)

    return log_path
