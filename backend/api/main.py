from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from typing import List, Optional
from datetime import datetime
import logging
import asyncio
import re

from api.database import SessionLocal, init_db, engine
from api.config import settings
from scrapers.manager import ScraperManager
from pydantic import BaseModel

# Setup logging directory
settings.log_dir.mkdir(exist_ok=True)

# Custom formatter to strip ANSI color codes from file logs
class ColorStripFormatter(logging.Formatter):
    """Formatter that strips ANSI color codes from log messages."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record):
        message = super().format(record)
        return self.ansi_escape.sub('', message)

# Setup logging with color support for console, stripped for file
file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
file_handler.setFormatter(ColorStripFormatter(settings.log_format))

console_handler = logging.StreamHandler()
console_handler.setFormatter(logging.Formatter(settings.log_format))

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[file_handler, console_handler],
    force=True  # Override any existing configuration
)

# Scraper loggers get their own handlers and do not propagate to root,
# so every crawl line appears exactly once
scraper_logger = logging.getLogger('scraper')
scraper_logger.propagate = False
# Only add handlers if not already present (prevents duplicates on module reload)
if not scraper_logger.handlers:
    # File handler with color stripping
    scraper_file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
    scraper_file_handler.setFormatter(ColorStripFormatter(settings.log_format))
    scraper_logger.addHandler(scraper_file_handler)

    # Console handler with colors
    scraper_console_handler = logging.StreamHandler()
    scraper_console_handler.setFormatter(logging.Formatter(settings.log_format))
    scraper_logger.addHandler(scraper_console_handler)
scraper_logger.setLevel(getattr(logging, settings.log_level.upper()))

logger = logging.getLogger(__name__)


async def cleanup_resources(manager: Optional[ScraperManager]):
    """Clean up all resources on shutdown."""
    logger.info("Cleaning up resources...")

    if manager is not None:
        try:
            await asyncio.wait_for(manager.close(), timeout=3.0)
            logger.info("Scraper resources closed")
        except asyncio.TimeoutError:
            logger.warning("Scraper cleanup timed out")
        except Exception as e:
            logger.warning(f"Error closing scraper resources: {e}")

    try:
        logger.info("Closing database connections...")
        engine.dispose(close=True)
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database connections: {e}")

    logger.info("Resource cleanup complete")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info("Portfolio Harvester Backend Starting Up")
    logger.info("=" * 60)
    logger.info(f"Log file: {settings.log_file}")
    logger.info(f"Database: {settings.database_url}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    init_db()
    logger.info("Database initialized successfully")

    manager = ScraperManager(SessionLocal)
    await manager.start()
    app.state.scraper_manager = manager
    logger.info("Backend ready to accept requests")

    yield  # Application runs here

    # Shutdown
    logger.info("=" * 60)
    logger.info("Portfolio Harvester Backend Shutting Down")
    logger.info("=" * 60)

    try:
        await asyncio.wait_for(cleanup_resources(manager), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("Shutdown cleanup timed out, forcing exit")
    except Exception as e:
        logger.error(f"Error during shutdown cleanup: {e}")

    logger.info("Shutdown complete")


app = FastAPI(
    title="Portfolio Harvester API",
    version="1.0.0",
    lifespan=lifespan
)

# Note: allow_credentials must be False when allow_origins is ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_scraper_manager(request: Request) -> ScraperManager:
    """The manager created at startup; overridden in tests."""
    manager = getattr(request.app.state, 'scraper_manager', None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Scraper manager not initialized")
    return manager


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Return empty response for favicon requests"""
    return Response(status_code=204)


# Pydantic models for API responses
class GeneralResponse(BaseModel):
    name: str
    description: Optional[str] = None
    website_url: Optional[str] = None
    logo_url: Optional[str] = None
    relevant_links: List[str] = []
    employee_count: Optional[str] = None
    executive_members: List[str] = []


class LocationResponse(BaseModel):
    headquarters: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class IndustryResponse(BaseModel):
    industry_type: Optional[str] = None


class OwnershipResponse(BaseModel):
    operating_region: List[str] = []
    year_since_investment: Optional[str] = None
    asset_classes: List[str] = []
    investment_interest: Optional[str] = None


class CompanyResponse(BaseModel):
    company_id: int
    general: GeneralResponse
    location: LocationResponse
    industry: IndustryResponse
    ownership: OwnershipResponse
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SummaryResponse(BaseModel):
    total_companies: int
    last_updated: Optional[datetime] = None


# API Endpoints

@app.get("/")
async def root():
    return {"message": "Portfolio Harvester API", "version": "1.0.0"}


@app.get("/api/scrapers")
async def list_scrapers(manager: ScraperManager = Depends(get_scraper_manager)):
    """List all configured scrapers and their implementation status"""
    return {
        "scrapers": manager.list_scrapers(),
        "implemented": manager.get_implemented_scrapers()
    }


async def _run_crawl(manager: ScraperManager, site_key: str):
    try:
        return await manager.scrape_site(site_key)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Crawl of {site_key} failed: {e}")
        raise HTTPException(status_code=502, detail=f"Crawl failed: {e}")


@app.post("/api/scrape/{site_key}")
async def scrape_site(site_key: str, manager: ScraperManager = Depends(get_scraper_manager)):
    """Run one crawl of a site and return its statistics"""
    result = await _run_crawl(manager, site_key.lower())
    return result.to_dict()


@app.get("/api/portfolio/scrape", response_model=List[CompanyResponse])
async def scrape_portfolio(manager: ScraperManager = Depends(get_scraper_manager)):
    """Crawl the KKR portfolio and return the refreshed company list"""
    await _run_crawl(manager, 'kkr')
    return manager.company_service.get_companies(force_refresh=True)


@app.get("/api/companies", response_model=List[CompanyResponse])
async def get_companies(
    refresh: bool = Query(False, description="Reload from the database instead of the cache"),
    manager: ScraperManager = Depends(get_scraper_manager),
):
    return manager.company_service.get_companies(force_refresh=refresh)


@app.get("/api/companies/summary", response_model=SummaryResponse)
async def get_companies_summary(manager: ScraperManager = Depends(get_scraper_manager)):
    return manager.company_service.get_summary()


@app.get("/api/companies/{company_id}", response_model=CompanyResponse)
async def get_company(company_id: int, manager: ScraperManager = Depends(get_scraper_manager)):
    company = manager.company_service.get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


@app.delete("/api/companies/{company_id}")
async def delete_company(company_id: int, manager: ScraperManager = Depends(get_scraper_manager)):
    if not manager.company_service.delete_company(company_id):
        raise HTTPException(status_code=404, detail="Company not found")
    return {"message": f"Deleted company {company_id}", "company_id": company_id}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        access_log=True,
        timeout_keep_alive=5,  # Reduce keep-alive timeout
        timeout_graceful_shutdown=5.0,  # Graceful shutdown timeout (5 seconds)
    )
