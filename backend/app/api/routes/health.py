"""Health check endpoints.

- /health: process liveness
- /healthz: database connectivity and ingestion worker load
"""

from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from backend.app.db.engine import get_session_factory
from backend.app.docs.dispatcher import get_dispatcher

router = APIRouter()


async def check_db() -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz() -> dict[str, Any] | JSONResponse:
    """Health check with component details.

    Returns:
        200 with component status if the database is reachable
        503 otherwise
    """
    db_ok, db_status = await check_db()
    dispatcher = get_dispatcher()

    response_body = {
        "status": "ok" if db_ok else "degraded",
        "components": {
            "db": db_status,
            "ingestion": {
                "active_runs": dispatcher.active_count,
                "max_workers": dispatcher.max_workers,
            },
        },
    }

    if not db_ok:
        return JSONResponse(content=response_body, status_code=503)

    return response_body
