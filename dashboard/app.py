"""FastAPI application serving the circletrace HTTP API."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import TracingSettings, load_settings
from dashboard.api import router as api_v1_router
from feedback.log import FeedbackLog
from monitoring.budget import BudgetRegistry
from tracing.sinks import DuckDBSink, create_sink

logger = logging.getLogger(__name__)


def create_app(
    feedback_log: Optional[FeedbackLog] = None,
    budgets: Optional[BudgetRegistry] = None,
    settings: Optional[TracingSettings] = None,
) -> FastAPI:
    """Build the app. Missing collaborators are created from configuration."""
    settings = settings or load_settings()
    if feedback_log is None:
        feedback_log = FeedbackLog(create_sink(settings))
    if budgets is None:
        budgets = BudgetRegistry()
        budgets.setup_default_budgets()

    sink = feedback_log.sink

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await sink.aclose()

    app = FastAPI(title="circletrace", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.feedback_log = feedback_log
    app.state.budgets = budgets
    app.state.repository = sink.repository if isinstance(sink, DuckDBSink) else None

    app.include_router(api_v1_router)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.debug(f"API ready (sink={sink.name}, configured={settings.is_configured})")
    return app
