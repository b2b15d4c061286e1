# relay_server/log.py

import logging
from pathlib import Path
from typing import List, Optional, Union

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

_installed: List[logging.Handler] = []


def setup_logging(level: Union[str, int] = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure the root logger for the relay server.

    Installs a console handler and, when ``log_file`` is given, a file handler
    next to it. Calling it again replaces the handlers it installed before, so
    the server can be restarted in the same process without duplicate lines.

    Returns the package logger ("relay_server").
    """
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)

    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    _installed.append(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        _installed.append(file_handler)

    for handler in _installed:
        root.addHandler(handler)

    return logging.getLogger("relay_server")
