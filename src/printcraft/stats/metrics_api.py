"""Prometheus scrape endpoint for queue and job gauges."""

from fastapi import APIRouter, Query, Request, Response

from .metrics_exporter import MetricsExporter

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def scrape_metrics(
    request: Request,
    window_minutes: int = Query(15, ge=1, le=24 * 60),
) -> Response:
    """Render the exporter snapshot; ``window_minutes`` bounds the duration histogram."""
    exporter: MetricsExporter | None = getattr(request.app.state, "metrics_exporter", None)
    if exporter is None:
        raise RuntimeError("Metrics exporter is not configured")
    return Response(content=exporter.collect(window_minutes=window_minutes), media_type=PROMETHEUS_CONTENT_TYPE)
