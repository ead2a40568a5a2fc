import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend import session, storage
from backend.routes import router
from threadline import Scheduler

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(data_dir: Path | None = None, scheduler: Scheduler | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved)
    engine = session.init_session(scheduler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Fire scheduled deliveries in the background while the app runs
        stop = asyncio.Event()
        task = asyncio.create_task(engine.scheduler.run(stop))
        try:
            yield
        finally:
            stop.set()
            await task

    app = FastAPI(title="Threadline", lifespan=lifespan)
    app.include_router(router, prefix="/api")
    return app
