import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from services.store import get_store, set_store
    logger.info(f"Cel Phone backend starting up (store: {settings.store_backend})...")
    store = get_store()
    yield
    await store.close()
    set_store(None)
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Cel Phone",
    version="0.1.0",
    description="Turn-based multiplayer prompt-and-animation chain game",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": "cel-phone",
        "version": "0.1.0",
        "store": settings.store_backend,
    }


from routers.game_router import router as game_router
from routers.ws_router import router as ws_router

app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
