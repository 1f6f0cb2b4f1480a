"""Entry point for running the Cartograph API server via ``python main.py``."""

import os

import uvicorn

from cartograph.api.app import create_app
from cartograph.config import settings

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        create_app(),
        host="0.0.0.0",
        port=port,
        log_level=settings.log_level.lower(),
    )
