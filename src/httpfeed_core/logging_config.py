import logging
import sys

DEFAULT_FORMAT = "%(asctime)s | %(levelname).1s | %(name)-30.30s | %(message)s"


def parse_level(level: int | str) -> int:
    """Turn a level number or name ("debug", "WARNING", "10") into a level number."""
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logging(level: int | str = logging.INFO, fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """Configures logging for the server and client entry points."""
    logger = logging.getLogger()  # Root logger
    logger.setLevel(parse_level(level))

    # Clear existing handlers before adding a new one
    while logger.hasHandlers():
        logger.removeHandler(logger.handlers[0])

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)

    return logger
