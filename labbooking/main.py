from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from labbooking.core.config import settings
from labbooking.api import bookings, webhook
from labbooking.core.exceptions import (
    BookingNotFoundError,
    CommitError,
    CoordinatorBusyError,
    InvalidTransitionError,
    LabNotFoundError,
    LeadTimeError,
    SlotUnavailableError,
)
from labbooking.core.logger import setup_logging, logger
from contextlib import asynccontextmanager
from datetime import datetime

setup_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 Starting Lab Booking Engine")
    yield
    # Shutdown
    if bookings._booking_service is not None:
        bookings._booking_service.cache.cancel_pending()
    logger.info("🛑 Shutting down backend")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan
)

def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": str(exc), "error": type(exc).__name__})

@app.exception_handler(CoordinatorBusyError)
async def busy_handler(request: Request, exc: CoordinatorBusyError):
    return _error(409, exc)

@app.exception_handler(InvalidTransitionError)
@app.exception_handler(SlotUnavailableError)
async def conflict_handler(request: Request, exc: Exception):
    return _error(409, exc)

@app.exception_handler(LeadTimeError)
async def lead_time_handler(request: Request, exc: LeadTimeError):
    return _error(403, exc)

@app.exception_handler(LabNotFoundError)
@app.exception_handler(BookingNotFoundError)
async def not_found_handler(request: Request, exc: Exception):
    return _error(404, exc)

@app.exception_handler(CommitError)
async def commit_handler(request: Request, exc: CommitError):
    return _error(502, exc)

# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"🔥 UNHANDLED ERROR: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"message": "Internal Server Error", "detail": "An unexpected error occurred. Please contact support."}
    )

# Include routers
app.include_router(bookings.router, prefix=settings.API_V1_STR, tags=["Bookings"])
app.include_router(webhook.router, prefix=settings.API_V1_STR, tags=["Events"])

@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT, "timestamp": datetime.now().isoformat()}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("labbooking.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
