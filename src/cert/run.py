#!/usr/bin/env python
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger


def run() -> None:
    load_dotenv(Path.cwd() / ".env")

    from src.cert.config import config
    from src.cert.main import main

    log_level = os.getenv("CERT_LOG_LEVEL", config.log_level).upper()
    logger.remove()
    logger.add(sys.stderr, level=log_level)

    main()


if __name__ == "__main__":
    run()
