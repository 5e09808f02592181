from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field
from loguru import logger

from counsel_retrieval.application.settings import get_settings, Settings
from counsel_retrieval.application.log_setup import setup_logging
from counsel_retrieval.application.services.models import Document, RetrievalResult
from counsel_retrieval.application.services.retrieval_service import RetrievalService

# Configure logging once
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Build a single RetrievalService (and its store registry) for the app lifetime
    app.state.retrieval = RetrievalService.build(get_settings())
    yield
    # write out embeddings computed lazily by searches before exiting
    await app.state.retrieval.shutdown()


app = FastAPI(title="College Counsel Retrieval (embedded vector store)", lifespan=lifespan)

# --- Dependencies ---
def settings_dep() -> Settings:
    return get_settings()

def retrieval_dep(request: Request) -> RetrievalService:
    return request.app.state.retrieval


# --- Meta ---
@app.get("/", tags=["meta"])
def root(settings: Settings = Depends(settings_dep)):
    return {
        "ok": True,
        "app_name": settings.app_name,
        "environment": settings.app_env,
        "debug": settings.debug,
    }


# --- Query ---
class QueryBody(BaseModel):
    query: Optional[str] = None
    # None means Settings.default_collection / Settings.default_k
    collection: Optional[str] = None
    limit: Optional[int] = None
    threshold: Optional[float] = None
    page: int = 1


def _dump(result: BaseModel) -> Dict[str, Any]:
    return result.model_dump(by_alias=True, exclude_none=True)


@app.get("/query", tags=["retrieval"])
async def query_get(
    query: Optional[str] = Query(default=None, description="Search text"),
    collection: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None),
    threshold: Optional[float] = Query(default=None),
    page: int = Query(default=1, ge=1),
    svc: RetrievalService = Depends(retrieval_dep),
):
    return await _run_query(QueryBody(query=query, collection=collection, limit=limit, threshold=threshold, page=page), svc)


@app.post("/query", tags=["retrieval"])
async def query_post(body: QueryBody, svc: RetrievalService = Depends(retrieval_dep)):
    return await _run_query(body, svc)


async def _run_query(body: QueryBody, svc: RetrievalService) -> Dict[str, Any]:
    if not body.query or not body.query.strip():
        raise HTTPException(status_code=400, detail="Query parameter is required")

    logger.info("Processing vector store query: {!r} in collection: {}", body.query, body.collection or svc.settings.default_collection)
    result: RetrievalResult = await svc.query_store(
        body.query,
        collection_name=body.collection,
        limit=body.limit,
        threshold=body.threshold,
        page=body.page,
    )
    return _dump(result)


# --- Ingest ---
class AddDocumentsBody(BaseModel):
    collection: Optional[str] = None
    documents: List[Document] = Field(default_factory=list)


@app.post("/documents", tags=["ingest"])
async def add_documents(body: AddDocumentsBody, svc: RetrievalService = Depends(retrieval_dep)):
    result = await svc.add_documents(body.documents, collection_name=body.collection)
    if not result.success:
        raise HTTPException(status_code=500, detail=result.error)
    return _dump(result)


# --- Collections ---
class DeleteCollectionBody(BaseModel):
    collectionName: Optional[str] = None


@app.post("/collections/delete", tags=["collections"])
async def delete_collection(body: DeleteCollectionBody, svc: RetrievalService = Depends(retrieval_dep)):
    if not body.collectionName:
        raise HTTPException(status_code=400, detail="Collection name is required")
    result = await svc.delete_collection(body.collectionName)
    if not result.success:
        raise HTTPException(status_code=500, detail=result.error)
    return _dump(result)


@app.get("/collections/{name}/stats", tags=["collections"])
async def collection_stats(name: str, svc: RetrievalService = Depends(retrieval_dep)):
    return await svc.collection_stats(name)
