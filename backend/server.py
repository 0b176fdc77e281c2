from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pathlib import Path
import logging

from core.config import settings
from core.exceptions import setup_exception_handlers
from database import init_indexes
from routers import create_api_router

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(title="FreightConnect API")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins.split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

api_router = create_api_router()


@api_router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "FreightConnect API"}


app.include_router(api_router)


@app.on_event("startup")
async def startup_event():
    await init_indexes()
    logger.info("FreightConnect API started successfully")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FreightConnect API shutting down")
