from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from lesson_agenda.api.routers import agenda, agreements, deviations
from lesson_agenda.core.config import settings
from lesson_agenda.core.database import init_db
from lesson_agenda.core.logging_config import RequestIdMiddleware, setup_logging
from lesson_agenda.core.monitoring import MetricsMiddleware, get_metrics

setup_logging(
    level=settings.log_level,
    to_file=settings.log_to_file,
    file_path=settings.log_file_path,
    max_bytes=settings.log_max_bytes,
    backup_count=settings.log_backup_count,
)

tags_metadata = [
    {"name": "agenda", "description": "Concrete lesson occurrences per teacher and date range"},
    {"name": "agreements", "description": "Recurring lesson agreements (read-only)"},
    {"name": "deviations", "description": "Moving, cancelling and restoring single or recurring occurrences"},
]

app = FastAPI(
    title="Lesson Agenda API",
    description="API for expanding lesson agreements into an agenda and editing its occurrences",
    openapi_tags=tags_metadata,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

init_db()

app.include_router(agenda.router)
app.include_router(agreements.router)
app.include_router(deviations.router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Lesson Agenda API"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=get_metrics())
