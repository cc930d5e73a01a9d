import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assistance.config import settings
from assistance.routes import programs_router, recipients_router
from assistance.services.mongo_service import mongo_service
from assistance.services.notification_service import notification_service

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await mongo_service.connect()
    logger.info("Connected to MongoDB")
    yield
    # Shutdown
    await notification_service.close()
    await mongo_service.close()
    logger.info("Disconnected from MongoDB")


app = FastAPI(
    title=settings.app_name,
    description="Quota allocation and recipient lifecycle for social assistance programs",
    version=settings.app_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(programs_router, prefix=settings.api_prefix)
app.include_router(recipients_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": f"{settings.app_name} is running", "version": settings.app_version}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    mongo_healthy = await mongo_service.health_check()
    return {
        "status": "healthy" if mongo_healthy else "degraded",
        "service": "assistance-allocation",
        "mongodb": mongo_healthy
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("assistance.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
