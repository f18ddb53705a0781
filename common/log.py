import logging

from common.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Configures the root logger once for the API server or the CLI."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs every request at INFO; the poll loop would flood the output.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_secret(value: str) -> str:
    """Shows only the last four characters of a credential."""
    if not value:
        return "Not set"
    return "***" + value[-4:]
