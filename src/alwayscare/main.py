from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.alwayscare.api.routers import auth_router, images_router, analysis_router
from src.alwayscare.infra.db import init_db
from src.alwayscare.infra.mq import start_broker, stop_broker

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    await start_broker()
    yield
    await stop_broker()

app = FastAPI(
    title="AlwaysCare",
    version="0.1.0",
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)

app.include_router(auth_router)
app.include_router(images_router)
app.include_router(analysis_router)

@app.get("/health")
def health():
    return {"status": "ok"}
