"""AETHEL audio backend entry point"""
import logging

from src.app.application import create_app, start_api
from src.config import get_settings

logger = logging.getLogger("aethel-audio")

settings = get_settings()
app = create_app(settings)


if __name__ == "__main__":
    logger.info("Starting AETHEL audio backend...")
    start_api(app, settings)
