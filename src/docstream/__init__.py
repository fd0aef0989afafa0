# docstream package init
import logging
import os


def _configure_logging() -> None:
    level_name = (os.getenv("DOCSTREAM_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("docstream")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[DOCSTREAM][%(levelname)s] %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    provider_level_name = (os.getenv("DOCSTREAM_PROVIDER_LOG_LEVEL") or level_name).upper()
    provider_level = getattr(logging, provider_level_name, level)
    logging.getLogger("docstream.provider").setLevel(provider_level)


_configure_logging()
