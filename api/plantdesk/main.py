import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import Base, SessionLocal, engine
from .errors import WorkflowError
from .logging_utils import configure_logging
from .notifications import NotificationDispatcher, NotificationWorker
from .routes_tickets import router as tickets_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    Base.metadata.create_all(bind=engine)
    worker = NotificationWorker(NotificationDispatcher(SessionLocal), maxsize=settings.notify_queue_size)
    await worker.start()
    app.state.notifier = worker
    logger.info("PlantDesk API started")
    yield
    await worker.stop()


app = FastAPI(title="PlantDesk API", lifespan=lifespan)


@app.get("/health", tags=["monitoring"])
async def health_check():
    return {"status": "healthy"}


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


# Security Headers Middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Content-Security-Policy"] = f"default-src 'self'; connect-src 'self' {settings.frontend_url}"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# CORS configuration
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tickets_router)
