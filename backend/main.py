"""Run the FastAPI app for the tool orchestrator."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from main_config import LOG_LEVEL
from src.routers import chat_router
from src.tool_orchestrator.config import ensure_dirs

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

ensure_dirs()

app = FastAPI(title="Tool Orchestrator", version="0.1.0")
app.include_router(chat_router)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
