"""Prometheus scrape endpoint (text exposition format, not JSON).

Serves the HTTP metrics plus the engine's lesson/course completion,
unlock decision and recalculation series declared in core/metrics.py.
Restrict it to the Prometheus server at the ingress.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
