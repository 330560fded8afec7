from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from .db import init_db
from .logging_setup import setup_console_logging
from .services import Services
from .settings import settings
from .routers import chat
from .routers import content
from .routers import exam
from .routers import results
from .routers import sync

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	setup_console_logging(settings.log_level)
	# Create the key/value table on first start
	init_db()
	services = Services()
	app.state.services = services
	# Reconnect to the mirror if a configuration was saved earlier
	if await services.sync.resume():
		logger.info("Resumed mirror sync from stored configuration")
	try:
		yield
	finally:
		await services.aclose()


app = FastAPI(title="Iqra Reading Levels API", lifespan=lifespan)
app.include_router(exam.router)
app.include_router(results.router)
app.include_router(content.router)
app.include_router(sync.router)
app.include_router(chat.router)


@app.get("/info")
def root():
	services = getattr(app.state, "services", None)
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"mirror_connected": bool(services and services.sync.connected),
	}
