import logging
from pathlib import Path
from typing import Optional, Union


DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_format: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    Configure process-wide logging with a consistent format.

    Intended to be called once from the main entrypoint.
    Safe to call multiple times; subsequent calls are ignored if handlers exist.
    An optional ``log_file`` receives the same records as the console.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    fmt = log_format or DEFAULT_FORMAT
    logging.basicConfig(level=level, format=fmt)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(handler)

    # Library chatter stays at warning unless explicitly requested
    for noisy in ("websockets", "aiohttp"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
