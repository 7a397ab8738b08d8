"""
asgi.py -- Application entry point for Gatehouse.

Run with:  uvicorn asgi:app --reload
           gatehouse            (console script; binds SERVER_HOST:SERVER_PORT)
"""

import uvicorn

from api.main import app
from core.config import get_settings

__all__ = ["app", "main"]


def main() -> None:
    settings = get_settings()
    uvicorn.run(app, host=settings.server_host, port=settings.server_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
