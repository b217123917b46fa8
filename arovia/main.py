"""
Arovia Health Risk API

This module bootstraps the FastAPI application with Clean Architecture.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from arovia.container import Container, create_container
from arovia.presentation import router, set_container, limiter, rate_limit_exceeded_handler


def create_app(container: Container | None = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application with all dependencies
    properly wired using the Clean Architecture pattern.
    """
    # Create the DI container
    container = container or create_container()

    logging.basicConfig(
        level=container.settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Set the container for dependency injection
    set_container(container)

    # Create FastAPI app
    app = FastAPI(
        title="Arovia Health Risk API",
        description="Lifestyle-aware health risk prediction from personal health records",
        version="1.0.0",
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # Include the API router
    app.include_router(router)

    return app


# Create the app instance for uvicorn
app = create_app()
