"""Route registration — mounts all routers under ``/api/v1``."""

from fastapi import FastAPI

from rdv_server.routes.admin import router as admin_router
from rdv_server.routes.email import router as email_router
from rdv_server.routes.messages import router as messages_router
from rdv_server.routes.sessions import router as sessions_router

API_PREFIX = "/api/v1"


def register_routes(app: FastAPI) -> None:
    """Include all sub-routers under the versioned API prefix."""
    app.include_router(messages_router, prefix=API_PREFIX)
    app.include_router(sessions_router, prefix=API_PREFIX)
    app.include_router(email_router, prefix=API_PREFIX)
    app.include_router(admin_router, prefix=API_PREFIX)
