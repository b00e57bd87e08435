from __future__ import annotations

import asyncio
import logging
import time
from types import SimpleNamespace
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest  # Prometheus metrics

from aggregation.scheduler import EpochAggregationJobs, EpochScheduler
from auth.token_table_authenticator import TokenTableAuthenticator
from metrics.metrics_collector import MetricsCollector
from protocol.types import ReferenceReading, ReferenceReadingIn
from service_config import ServiceConfig, configure_logging, load_service_config
from storage.feature_store import FeatureStore
from storage.sqlite_store import SqliteFeatureStore
from stream.errors import IngestionError, OwnershipMismatch, PersistenceFailure
from stream.feature_pipeline import FeaturePipeline, error_ack
from stream.stream_metrics import stream_total_ingested, validation_failures

logger = logging.getLogger("service")


def create_app(config: Optional[ServiceConfig] = None, store: Optional[FeatureStore] = None) -> FastAPI:
    """Build the service. The store and background tasks are created on startup."""
    config = config or load_service_config()
    app = FastAPI(title="EEG Synchrony Service")
    authenticator = TokenTableAuthenticator(config.auth.tokens)
    state = SimpleNamespace(
        store=store, pipeline=None, jobs=None, scheduler=None, metrics_collector=None, background_tasks=[],
    )
    app.state.service = state

    # ─────────── Startup Initialization ───────────
    @app.on_event("startup")
    async def _start_service() -> None:
        configure_logging(config.logging, verbose=config.stream.verbose)
        if state.store is None:
            state.store = SqliteFeatureStore(config.storage.db_path)
        state.pipeline = FeaturePipeline(state.store, config.stream)
        state.jobs = EpochAggregationJobs(state.store, config.aggregation)
        state.scheduler = EpochScheduler(state.jobs, config.aggregation.epoch_duration_ms)
        state.metrics_collector = MetricsCollector(config.metrics)

        # Force metric registration (shows up in Prometheus even before increment)
        stream_total_ingested.inc(0)
        for reason in ("malformed", "ownership"):
            validation_failures.labels(reason).inc(0)

        state.background_tasks.clear()
        state.background_tasks.append(asyncio.create_task(_run_scheduler_with_shutdown(state.scheduler)))
        state.background_tasks.append(asyncio.create_task(_run_metrics_with_shutdown(state.metrics_collector)))
        logger.info("All background tasks started successfully")

    @app.on_event("shutdown")
    async def _shutdown_service() -> None:
        logger.info("Cancelling all background tasks...")
        for task in state.background_tasks:
            if not task.done():
                task.cancel()
        if state.background_tasks:
            await asyncio.gather(*state.background_tasks, return_exceptions=True)
            logger.info("All background tasks cancelled successfully.")
        if state.pipeline is not None:
            state.pipeline.close()
        if state.store is not None:
            state.store.close()

    # ─────────── Ingestion WebSocket ───────────
    @app.websocket("/ws")
    async def _ingest(websocket: WebSocket, token: Optional[str] = None) -> None:
        subject_id = authenticator.resolve_subject(token)
        if subject_id is None:
            logger.warning("Rejected WebSocket connection with unknown token")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        logger.info(f"Subject {subject_id} connected")
        violations = 0
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    acks = await state.pipeline.handle_message(raw, subject_id)
                except OwnershipMismatch as e:
                    violations += 1
                    await websocket.send_json(error_ack(e))
                    if violations >= config.stream.max_ownership_violations:
                        logger.warning(f"Closing session of subject {subject_id} after {violations} ownership violations")
                        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                        return
                    continue
                except IngestionError as e:
                    await websocket.send_json(error_ack(e))
                    continue
                for ack in acks:
                    await websocket.send_json(ack)
        except WebSocketDisconnect:
            logger.info(f"Subject {subject_id} disconnected")
            await state.pipeline.run_feature_window_flush()

    # ─────────── Reference readings ───────────
    @app.exception_handler(RequestValidationError)
    async def _validation_error(request, exc: RequestValidationError) -> JSONResponse:
        # rejected inputs are not echoed back: NaN and inf have no JSON form
        errors = [{key: error[key] for key in ("type", "loc", "msg") if key in error} for error in exc.errors()]
        return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})

    @app.post("/reference-readings")
    async def _log_reference_reading(body: ReferenceReadingIn) -> dict:
        phases = body.band_phases()
        if all(phase is None for phase in phases.values()):
            raise HTTPException(status_code=422, detail="At least one phase is required")
        reading = ReferenceReading(
            timestamp=body.timestamp if body.timestamp is not None else time.time() * 1000.0,
            phases=phases,
            location=body.location,
        )
        try:
            reading.reading_id = await run_in_threadpool(state.store.append_reference_reading, reading)
        except PersistenceFailure as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"status": "success", **reading.to_payload()}

    # ─────────── Prometheus /metrics Endpoint ───────────
    @app.get("/metrics", response_class=PlainTextResponse)
    async def _metrics() -> str:
        return generate_latest().decode("utf-8")

    return app


async def _run_scheduler_with_shutdown(scheduler: EpochScheduler):
    """Run the epoch scheduler with shutdown awareness"""
    try:
        await scheduler.run()
    except asyncio.CancelledError:
        logger.info("Epoch scheduler task cancelled")
        scheduler.stop()
    except Exception as e:
        logger.error(f"Epoch scheduler error: {e}")


async def _run_metrics_with_shutdown(metrics_collector: MetricsCollector):
    """Run metrics collector with shutdown awareness"""
    try:
        await metrics_collector.collect_metrics()
    except asyncio.CancelledError:
        logger.info("Metrics collector task cancelled")
        metrics_collector.stop()
    except Exception as e:
        logger.error(f"Metrics collector error: {e}")


# ─────────── Run Uvicorn ───────────
if __name__ == "__main__":
    uvicorn.run(create_app(), host="0.0.0.0", port=8080, reload=False)
