from __future__ import annotations

from fastapi import FastAPI, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import inspect

from stepcounter.core import database
from stepcounter.core.config import get_settings
from stepcounter.core.log import configure_logging
from stepcounter.routers import health, steps
from stepcounter.services import runtime


CORE_ROUTERS = (
    (health.router, {"tags": ["health"]}),
    (steps.router, {}),
)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url=settings.docs_url,
    )

    @application.get("/favicon.ico")
    def favicon():
        return Response(status_code=204)

    for router, include_kwargs in CORE_ROUTERS:
        application.include_router(router, **include_kwargs)

    @application.get("/", include_in_schema=False)
    def root():
        target = settings.docs_url or "/docs"
        return RedirectResponse(target)

    @application.get("/__routes", include_in_schema=False)
    def routes_snapshot():
        return sorted(f"{route.path}  [{','.join(route.methods)}]" for route in application.router.routes)

    @application.get("/__dbcheck", include_in_schema=False)
    def dbcheck():
        return {"tables": inspect(database.engine).get_table_names()}

    @application.on_event("startup")
    def _startup():
        database.init_db()
        runtime.get_step_service()

    @application.on_event("shutdown")
    def _shutdown():
        runtime.shutdown_step_service()

    return application


app = create_app()
