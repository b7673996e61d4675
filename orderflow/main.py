# orderflow/main.py
import uvicorn
from fastapi import FastAPI

from orderflow.api import create_app
from orderflow.data import models  # noqa: F401  registers every table on Base.metadata
from orderflow.data.database import Base, engine
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


def init_db():
    logger.info(f"Creating tables: {sorted(Base.metadata.tables.keys())}")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise


def build() -> FastAPI:
    init_db()
    return create_app()


app = build()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
