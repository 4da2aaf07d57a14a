from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse

from gridwatch.api.deps import Monitor
from gridwatch.core.errors import BatchFetchError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/historian/timeseriesdata/read")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


@router.get("/historic/{ids}/{start}/{end}/{fmt}")
def historic_passthrough(
    ids: str, start: str, end: str, fmt: str, monitor: Monitor
) -> Response:
    try:
        status_code, body = monitor.historian.read_historic_raw(ids, start, end, fmt)
    except BatchFetchError as e:
        logger.warning("Historian passthrough failed: %s", e)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    if body is None:
        return JSONResponse(
            {"error": f"External service error: {status_code}"}, status_code=status_code
        )
    return JSONResponse(body, headers=CORS_HEADERS)


@router.options("/historic/{path:path}")
def historic_preflight(path: str) -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)
