import logging

from paycore.config import LOG_LEVEL


def configure_logging() -> None:
    """Niveau racine depuis LOG_LEVEL; les handlers uvicorn restent en place s'ils existent déjà."""
    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("paycore").setLevel(level)
