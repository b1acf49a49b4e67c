from fastapi import FastAPI

from . import assessments, certificates, health, questions


def register_routes(app: FastAPI) -> None:
    """Attach all API routers to the FastAPI application."""
    app.include_router(health.router)
    app.include_router(questions.router)
    app.include_router(assessments.router)
    app.include_router(certificates.router)
