"""
Catalog Sync - Backend API
Inventory to Shopify synchronization engine
"""
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables before settings are read
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from catalog_sync import __version__
from catalog_sync.api import shopify_sync
from catalog_sync.core.config import settings
from catalog_sync.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)

# Create FastAPI application
app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(shopify_sync.router)


@app.get("/")
async def root():
    return {
        "service": settings.API_TITLE,
        "version": __version__,
        "docs": "/docs"
    }


@app.get("/health")
async def health():
    """Liveness check; does not touch the database"""
    return {"status": "healthy", "service": "catalog-sync"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("catalog_sync.main:app", host="0.0.0.0", port=8000)
