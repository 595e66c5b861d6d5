import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from niramay.core.config import settings
from niramay.core.database import engine
from niramay.core.exceptions import NiramayError, global_exception_handler, niramay_exception_handler
from niramay.models import Base
from niramay.api import admin, routes, store, workers
from niramay.services.maps import MapsService
from niramay.services.realtime import RosterBroadcaster

# Basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("niramay")

# Optionally create tables locally (set AUTO_CREATE_TABLES=true for dev/migrations-free environments)
if settings.AUTO_CREATE_TABLES:
    Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Service handles live for the whole process and are shared by every request
    app.state.maps = MapsService(settings.GOOGLE_MAPS_API_KEY, timeout=settings.MAPS_TIMEOUT_SECONDS)
    app.state.roster = RosterBroadcaster()
    logger.info("Niramay API starting (maps %s)", "enabled" if app.state.maps.enabled else "disabled")
    yield
    app.state.maps.close()


app = FastAPI(title="Niramay Waste Reporting API", lifespan=lifespan)

app.add_exception_handler(NiramayError, niramay_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(routes.router)
app.include_router(store.router)
app.include_router(workers.router)
app.include_router(admin.router)


@app.get("/health/")
async def health():
    return {"status": "ok"}
