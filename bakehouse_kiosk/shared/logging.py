import sys

from loguru import logger

_CONFIGURED = False


def configure_logging(level: str = "INFO") -> None:
    """Swap loguru's default sink for a single stderr sink at `level`.

    Called once by the CLI. Library modules only ever import `logger`.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {name}: {message}",
    )
    _CONFIGURED = True
