import logging
import os

from fastapi import FastAPI

from clinic.api.deps import get_registry
from clinic.api.routes import router

app = FastAPI(title="kawaii-clinic", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=os.environ.get("CLINIC_LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


@app.on_event("shutdown")
async def _shutdown() -> None:
    # Only close a registry that was actually built; never build one on the way out.
    if get_registry.cache_info().currsize:
        await get_registry().aclose()


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "kawaii-clinic", "version": "0.1.0"}
