"""Run FastAPI backend server."""

import os

import uvicorn

from quizfill.config import get_settings

if __name__ == "__main__":
    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", get_settings().port)),
        reload=os.environ.get("QF_ENV", "development") == "development",
    )
