"""
CivicEase counter queue: FastAPI server

Handles:
  - Walk-in booking with per-day queue numbers
  - Staff queue actions (list, call next, mark served, search)
  - APScheduler reminder job lifecycle
  - Admin / staff listing endpoints

Paths are kebab-case and JSON keys snake_case (`/api/call-next`,
`queue_number`). `/api/callNext` is still accepted for the older browser
client; that client must read `queue_number` instead of `queueNumber`.
"""

from __future__ import annotations

import logging
import zoneinfo
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from civicqueue import appointment_store, counter_queue
from civicqueue.config import settings
from civicqueue.errors import AllocationConflict, EmptyQueue, QueueError, ValidationError
from civicqueue.scheduler import get_scheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# App lifespan: load the store, start/stop APScheduler
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.store_path:
        appointment_store.configure(settings.store_path)
    if not settings.sms_enabled:
        logger.info("Twilio not configured; SMS will be logged (mock mode).")
    scheduler = get_scheduler()
    scheduler.start()
    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    yield
    scheduler.shutdown(wait=False)


app = FastAPI(
    title="CivicEase Counter Queue",
    version="1.0.0",
    lifespan=lifespan,
)


class BookingRequest(BaseModel):
    # Blank defaults so missing fields reach the queue's own validation (400)
    name: str = ""
    phone: str = ""
    service: str = ""
    date: str = ""
    time: str = ""
    client_ref: Optional[str] = None


class ServedRequest(BaseModel):
    id: str = ""


@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    if isinstance(exc, EmptyQueue):
        return JSONResponse({"success": False, "message": exc.message})
    if isinstance(exc, AllocationConflict):
        logger.error("Allocation conflict on %s: %s", request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    today = datetime.now(zoneinfo.ZoneInfo(settings.office_timezone)).date().isoformat()
    return {
        "status": "ok",
        "counter": settings.business_name,
        "sms_mode": "twilio" if settings.sms_enabled else "mock",
        "reminder_hours_before": settings.reminder_hours_before,
        "pending": len(counter_queue.list_queue()),
        "appointments_today": len(appointment_store.list_all(date_str=today)),
    }


# ---------------------------------------------------------------------------
# Queue API
# ---------------------------------------------------------------------------

@app.post("/api/book")
def api_book(payload: BookingRequest):
    result = counter_queue.book(
        name=payload.name,
        phone=payload.phone,
        service=payload.service,
        date_str=payload.date,
        time_str=payload.time,
        client_ref=payload.client_ref,
    )
    return {"success": True, **result}


@app.get("/api/queue")
def api_queue():
    return counter_queue.list_queue()


@app.post("/api/call-next")
@app.post("/api/callNext", include_in_schema=False)
def api_call_next():
    called = counter_queue.call_next()
    return {
        "success": True,
        "message": f"Called queue #{called['queue_number']}",
        **called,
    }


@app.post("/api/served")
def api_served(payload: ServedRequest):
    appt = counter_queue.mark_served(payload.id)
    return {"success": True, "appointment": appt}


@app.get("/api/search")
def api_search(q: str = ""):
    return counter_queue.search(q)


# ---------------------------------------------------------------------------
# Admin / Staff API
# ---------------------------------------------------------------------------

@app.get("/admin/appointments")
def admin_appointments(date: str | None = None, status: str | None = None):
    if status and status not in appointment_store.STATUSES:
        raise ValidationError(f"Unknown status {status!r}.")
    return appointment_store.list_all(date_str=date, status=status)


@app.get("/admin/scheduler/jobs")
def admin_scheduler_jobs():
    """List scheduled background jobs and their next run times."""
    scheduler = get_scheduler()
    jobs = []
    for job in scheduler.get_jobs():
        # Jobs on a stopped scheduler have no next_run_time yet
        next_run = getattr(job, "next_run_time", None)
        jobs.append({"id": job.id, "next_run": next_run.isoformat() if next_run else None})
    return jobs
