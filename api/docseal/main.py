import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .routers import activity, documents, requests, signing
from .config import LOG_LEVEL
from .db import init_db
from .errors import DocSealError, docseal_error_handler
from .fields import FIELD_CATALOG
from .rendering import BakeError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="DocSeal signing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(DocSealError, docseal_error_handler)

@app.exception_handler(BakeError)
async def bake_error_handler(request: Request, exc: BakeError):
    logger.error("bake failed for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Failed to render signed document"})

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(requests.router, prefix="/api/requests", tags=["requests"])
app.include_router(signing.router, prefix="/api/sign", tags=["signing"])
app.include_router(activity.router, prefix="/api/activity", tags=["activity"])

@app.get("/api/fields/catalog")
def field_catalog():
    return FIELD_CATALOG

@app.get("/")
def root():
    return {"ok": True, "service": "docseal-api"}
