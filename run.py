"""Uvicorn launcher for the voyage planning API.

Host, port and log level come from the application settings; auto-reload
is on in development only.

Usage:
    python run.py              # reload follows the environment
    python run.py --no-reload  # never reload
"""

import sys

import uvicorn

from voyageflow.core.config import (
    Environment,
    settings,
)

if __name__ == "__main__":
    reload = settings.ENVIRONMENT == Environment.DEVELOPMENT and "--no-reload" not in sys.argv
    uvicorn.run(
        "voyageflow.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )
