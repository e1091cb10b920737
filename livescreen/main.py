import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from livescreen.database import Base, SessionLocal, engine
from livescreen.logging_config import setup_logging
from livescreen.models import response, session, student, subtest  # noqa: F401  (register tables)
from livescreen.routers import orf as orf_router
from livescreen.routers import seb as seb_router
from livescreen.routers import session as session_router
from livescreen.routers import student as student_router
from livescreen.routers import subtests as subtests_router
from livescreen.settings import settings
from livescreen.utils.channel import hub
from livescreen.utils.controller import registry
from livescreen.utils.errors import LiveScreenError, PersistenceError
from livescreen.utils.subtest_loader import import_all

setup_logging()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # timers tick on this loop even when commands arrive from worker threads
    registry.loop = asyncio.get_running_loop()
    if settings.import_catalog_on_startup:
        with SessionLocal() as db:
            result = import_all(db)
        if result["errors"]:
            logger.warning("Catalog import finished with %d error(s)", len(result["errors"]))
    yield
    registry.clear()
    hub.close()
    registry.loop = None


app = FastAPI(title="LiveScreen", lifespan=lifespan)


@app.exception_handler(LiveScreenError)
async def livescreen_error_handler(request: Request, exc: LiveScreenError):
    level = logging.ERROR if isinstance(exc, PersistenceError) else logging.WARNING
    logger.log(level, "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


app.include_router(session_router.router)
app.include_router(orf_router.router)
app.include_router(seb_router.router)
app.include_router(subtests_router.router)
app.include_router(student_router.router)


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("livescreen.main:app", host="127.0.0.1", port=8000, reload=True)
