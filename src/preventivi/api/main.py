"""
@file main.py
@brief Entry point FastAPI.
@ingroup api_module
"""

from __future__ import annotations
from fastapi import FastAPI

from preventivi.domain.errors import RenderError
from preventivi.logging_config import setup_logging
from preventivi.settings import get_settings
from .routes import render_error_handler, router


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    app = FastAPI(title="Preventivi API", version="0.1.0")
    app.add_exception_handler(RenderError, render_error_handler)
    app.include_router(router)
    return app


app = create_app()
