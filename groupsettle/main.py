from contextlib import asynccontextmanager

from fastapi import FastAPI
from groupsettle.api.deps import close_services, init_services
from groupsettle.api.v1.api import api_router
from groupsettle.core.config import settings
from groupsettle.core.logging import configure_logging
from groupsettle.db.mongo import close_mongo_connection, connect_to_mongo

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    await init_services()
    yield
    await close_services()
    await close_mongo_connection()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan
)

@app.get("/")
async def root():
    return {"message": "Welcome to the Group Settlement API"}

app.include_router(api_router, prefix=settings.API_V1_STR)
