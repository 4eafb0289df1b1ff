"""
Worksheet Wizard - Main Application
Local service behind the browser worksheet wizard
FILE: main.py
"""
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import time

from worksheet_wizard.api.wizard import router as wizard_router
from worksheet_wizard.core.config import settings
from worksheet_wizard.services.wizard import WizardController, close_wizard_controller, get_wizard_controller

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    logger.info("🚀 Starting Worksheet Wizard...")

    try:
        wizard = get_wizard_controller()
        if await wizard.restore():
            logger.info(f"✓ Session restored at step {int(wizard.step)}")
        else:
            logger.info("✓ No saved session, starting at login")
    except Exception as e:
        logger.error(f"❌ Startup error: {e}")
        raise

    yield

    # Shutdown
    logger.info("🛑 Shutting down Worksheet Wizard...")
    await close_wizard_controller()
    logger.info("✓ Cleanup complete")


app = FastAPI(
    title="Worksheet Wizard",
    description="""
    Step-by-step client for the AI worksheet generation API.

    ## Steps
    1. **Login**: `/api/wizard/login`
    2. **Configure**: `/api/wizard/board`, `/api/wizard/grade`, `/api/wizard/form`, `/api/wizard/metadata`
    3. **Review metadata**: `/api/wizard/question-config`
    4. **Review questions**: `/api/wizard/worksheet`
    5. **Complete**: `/api/wizard/export`, `/api/wizard/create-another`

    The current state is always available at `/api/wizard/state`.
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:4000",
        "http://localhost:3000",  # Common React dev port
        "http://localhost:5173",  # Vite dev server
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time to response headers"""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000  # Convert to ms
    response.headers["X-Process-Time-Ms"] = str(round(process_time, 2))
    return response


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    logger.info(f"📨 {request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(
        f"📤 {request.method} {request.url.path} - "
        f"Status: {response.status_code}"
    )
    return response


# ==================== INCLUDE ROUTERS ====================

app.include_router(wizard_router, tags=["Wizard"])


# ==================== ROOT ENDPOINTS ====================

@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Worksheet Wizard",
        "version": "1.0.0",
        "status": "operational",
        "endpoints": {
            "docs": "/docs",
            "redoc": "/redoc",
            "state": "/api/wizard/state",
            "export": "/api/wizard/export",
            "health": "/health"
        }
    }


@app.get("/health", tags=["Health"])
async def health_check(wizard: WizardController = Depends(get_wizard_controller)):
    """Service health with the wizard's current step"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "api_base": settings.worksheet_api_base,
        "step": int(wizard.step),
        "api": {
            "title": app.title,
            "version": app.version,
            "status": "operational"
        }
    }


# ==================== RUN APPLICATION ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "worksheet_wizard.main:app",
        host="127.0.0.1",
        port=8080,
        reload=True,
        log_level="info"
    )
