import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from database import init_db
from errors import ProposalServiceError
from stores import DocumentStore, LocalBlobStore
from api.admin import router as admin_router
from api.drafts import router as drafts_router
from api.notifications import router as notifications_router
from api.proposals import router as proposals_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    documents = DocumentStore.from_url(settings.document_store_url)
    await documents.init()
    app.state.documents = documents
    app.state.blobs = LocalBlobStore(settings.blob_storage_dir)
    logger.info("Stores ready (relational=%s, documents=%s)", settings.database_url, settings.document_store_url)
    yield
    await documents.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Event proposal drafts, hybrid persistence and review workflow",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProposalServiceError)
async def proposal_service_error_handler(request: Request, exc: ProposalServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


app.include_router(drafts_router)
app.include_router(proposals_router)
app.include_router(admin_router)
app.include_router(notifications_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
