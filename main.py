"""Entrypoint for running the expense_tracker FastAPI backend locally."""
from __future__ import annotations

import uvicorn

from expense_tracker.config import configure_logging


if __name__ == "__main__":
    configure_logging()
    uvicorn.run(
        "expense_tracker.api:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
