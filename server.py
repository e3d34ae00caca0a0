#!/usr/bin/env python3
"""Production-oriented entrypoint for the admin API."""

import os

import uvicorn

from config import as_bool


def main():
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    reload = as_bool(os.environ.get("RELOAD"), default=False)
    log_level = os.environ.get("LOG_LEVEL", "info")
    # Conversation state is in-process, so the API always runs as a single worker
    uvicorn.run("app:app", host=host, port=port, workers=1, reload=reload, log_level=log_level)


if __name__ == "__main__":
    main()
