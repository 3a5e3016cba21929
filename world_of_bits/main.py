import logging

from fastapi import FastAPI

from world_of_bits.api.routes import router
from world_of_bits.sessions import close_all_sessions

app = FastAPI(title="world-of-bits", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)


@app.on_event("shutdown")
async def _shutdown() -> None:
    close_all_sessions()


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "world-of-bits", "version": "0.1.0"}
