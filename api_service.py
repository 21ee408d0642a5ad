# api_service.py
from fastapi import FastAPI, HTTPException, Body, Depends, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from typing import Any, Dict, Optional
import logging
from datetime import datetime, timezone

import settings
from config_store import ConfigStore
from errors import StorageError, ValidationError
from event_log import EventLog
from metrics import compute_metrics, empty_report, to_epoch_ms
from monitoring import EVENTS_INGESTED, EVENTS_REJECTED, monitor_performance
from significance import significance_test


app = FastAPI(title="Ad Placement A/B Testing API", version="1.0.0")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Storage dependencies, overridable per app instance
def get_event_log() -> EventLog:
    return EventLog(settings.AB_EVENTS_FILE)


def get_config_store() -> ConfigStore:
    return ConfigStore(settings.AB_CONFIG_FILE)


# Every failure is reported as {"error": "..."}
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {problems}"})


@app.post("/api/ab-track")
async def track_event(payload: Optional[Dict[str, Any]] = Body(None), log: EventLog = Depends(get_event_log)):
    """Append one tracking event to the event log"""
    try:
        record = log.append(payload)
    except ValidationError as e:
        EVENTS_REJECTED.labels(reason="validation").inc()
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        EVENTS_REJECTED.labels(reason="storage").inc()
        logging.error(f"Error storing tracking event: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to store event")

    EVENTS_INGESTED.labels(event_name=str(record["eventName"])).inc()
    return {"success": True}


@app.get("/api/ab-metrics")
@monitor_performance("metrics")
async def get_metrics(
    test_id: Optional[str] = Query(None, alias="testId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    log: EventLog = Depends(get_event_log),
):
    """Per-variant completion, share, churn, session and ad metrics"""
    for value in (start_date, end_date):
        if value:
            try:
                to_epoch_ms(value)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid date: {value}")

    try:
        if not log.exists():
            return empty_report(test_id)
        return compute_metrics(log.read(), test_id, start_date, end_date)
    except Exception as e:
        logging.error(f"Error computing metrics: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to compute metrics")


@app.get("/api/ab-statistical-test")
@monitor_performance("significance")
async def statistical_test(
    test_id: str = Query(..., alias="testId"),
    metric_name: str = Query(..., alias="metricName"),
    variant_a: str = Query(..., alias="variantA"),
    variant_b: str = Query(..., alias="variantB"),
    log: EventLog = Depends(get_event_log),
):
    """Two-proportion z-test of a metric between two variants"""
    try:
        return significance_test(log.read(), test_id, metric_name, variant_a, variant_b)
    except Exception as e:
        logging.error(f"Error running statistical test: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to run statistical test")


@app.get("/api/ab-config")
async def read_config(store: ConfigStore = Depends(get_config_store)):
    try:
        document = store.load()
    except StorageError as e:
        logging.error(f"Error reading config: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to read config")

    if document is None:
        raise HTTPException(status_code=404, detail="Config file not found")
    return document


@app.post("/api/ab-config")
async def update_config(document: Any = Body(...), store: ConfigStore = Depends(get_config_store)):
    try:
        store.save(document)
    except StorageError as e:
        logging.error(f"Error updating config: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update config")

    return {"success": True, "message": "Config updated"}


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/prometheus")
async def prometheus_metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.LOG_LEVEL)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
