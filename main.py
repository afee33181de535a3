import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.fragments.routers import router as fragments_router
from apps.fragments.services import FragmentService
from apps.fragments.storage import FragmentStore, TortoiseFragmentStore, pick_storage
from config.db import close_db, init_db
from config.logging import configure_logging
from config.middleware import OwnerMiddleware
from config.settings import LOG_LEVEL, SERVICE_VERSION, STORAGE_BACKEND
from utils.response_wrapper import create_success_response, error_response

logger = logging.getLogger(__name__)


def create_app(store: FragmentStore | None = None) -> FastAPI:
    """Build the API. Without an explicit store one is picked from STORAGE_BACKEND at start-up."""
    configure_logging(LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service = getattr(app.state, 'fragments', None)
        if service is None:
            service = FragmentService(pick_storage())
            app.state.fragments = service
            logger.info(f"storage backend: {STORAGE_BACKEND}")
        uses_db = isinstance(service.store, TortoiseFragmentStore)
        if uses_db:
            await init_db()
        try:
            yield
        finally:
            if uses_db:
                await close_db()

    app = FastAPI(title="Fragments Service", version=SERVICE_VERSION, lifespan=lifespan)
    if store is not None:
        app.state.fragments = FragmentService(store)

    app.add_middleware(OwnerMiddleware)
    app.include_router(fragments_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = 'not found' if exc.status_code == 404 else str(exc.detail)
        return error_response(exc.status_code, message)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"invalid request {request.url.path}: {exc.errors()}")
        return error_response(400, 'invalid request')

    @app.get("/")
    async def health():
        # Clients shouldn't cache this response
        return JSONResponse(
            create_success_response({'version': SERVICE_VERSION}),
            headers={'Cache-Control': 'no-cache'},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8080)
