from fastapi import FastAPI
import logging

from playengine.api.routes import router
from playengine.config import EngineSettings

app = FastAPI(title="playengine", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=EngineSettings.from_env().log_level)
logger = logging.getLogger(__name__)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "playengine", "version": "0.1.0"}
