import logging
from typing import Optional

from sqlalchemy.engine import Engine

from intake.core.db import Base, engine as default_engine
# Ensure models are imported so SQLAlchemy knows about them
from intake import models  # noqa: F401

logger = logging.getLogger("intake.bootstrap")


def create_all(bind: Optional[Engine] = None) -> None:
    """Create the intake tables if they don't exist yet."""
    eng = bind if bind is not None else default_engine
    Base.metadata.create_all(bind=eng)
    logger.info("schema ready: %s", ", ".join(sorted(Base.metadata.tables)))
