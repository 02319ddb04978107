"""Document endpoints - upload intent, content upload, listing, ingestion and status."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.adapters.blob_store import BlobStore
from backend.app.api.auth import get_current_context
from backend.app.api.deps import get_app_settings, get_blob_store, get_ingestion_service
from backend.app.api.errors import http_error
from backend.app.config import Settings
from backend.app.db.context import RequestContext
from backend.app.db.engine import get_session
from backend.app.docs.ingest import (
    IngestionService,
    create_upload_intent,
    store_document_content,
)
from backend.app.errors import DocQAError
from backend.app.models.documents import DocumentStatusView, DocumentSummary, SubmitAck

router = APIRouter(prefix="/documents", tags=["documents"])
logger = logging.getLogger(__name__)


class CreateDocumentRequest(BaseModel):
    """Request body for POST /documents."""

    file_name: str = Field(..., min_length=1, max_length=255, description="Original file name")
    mime_type: str = Field(..., min_length=1, description="Declared MIME type")
    size_bytes: int = Field(..., ge=0, description="File size in bytes")
    extracted_text: str | None = Field(
        None, description="Text extracted client-side; skips server extraction"
    )


class CreateDocumentResponse(BaseModel):
    """Response for POST /documents."""

    document_id: UUID
    storage_key: str
    title: str


class StoreContentResponse(BaseModel):
    """Response for PUT /documents/{id}/content."""

    document_id: UUID
    url: str


class DocumentListResponse(BaseModel):
    """Response for GET /documents."""

    documents: list[DocumentSummary]


@router.post("", response_model=CreateDocumentResponse, status_code=status.HTTP_201_CREATED)
async def create_document_intent(
    request: CreateDocumentRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> CreateDocumentResponse:
    """Register an upload and create its PENDING document.

    Raises:
        HTTPException: 400 if the type or size is not accepted
    """
    try:
        document = await create_upload_intent(
            ctx=ctx,
            file_name=request.file_name,
            mime_type=request.mime_type,
            size_bytes=request.size_bytes,
            extracted_text=request.extracted_text,
            settings=settings,
            session=session,
        )
    except DocQAError as e:
        raise http_error(e) from e

    return CreateDocumentResponse(
        document_id=document.document_id,
        storage_key=document.storage_key,
        title=document.title,
    )


@router.put("/{document_id}/content", response_model=StoreContentResponse)
async def upload_document_content(
    document_id: UUID,
    request: Request,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
) -> StoreContentResponse:
    """Store the raw file bytes (request body) for a document."""
    data = await request.body()

    try:
        url = await store_document_content(
            document_id,
            data,
            ctx=ctx,
            blob_store=blob_store,
            settings=settings,
            session=session,
        )
    except DocQAError as e:
        raise http_error(e) from e

    return StoreContentResponse(document_id=document_id, url=url)


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> DocumentListResponse:
    """List the caller's documents, newest first."""
    documents = await service.list_documents(ctx=ctx, session=session)
    return DocumentListResponse(documents=documents)


@router.post(
    "/{document_id}/ingest",
    response_model=SubmitAck,
    status_code=status.HTTP_202_ACCEPTED,
)
async def ingest_document(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
    recover: Annotated[bool, Query(description="Retry a run abandoned in PROCESSING")] = False,
) -> SubmitAck:
    """Start ingestion; returns as soon as PROCESSING is recorded.

    Raises:
        HTTPException: 404 if not found, 409 if already processed or in progress
    """
    logger.info(f"[POST /documents/{document_id}/ingest] user_id={ctx.user_id}")

    try:
        return await service.submit(document_id, ctx=ctx, session=session, recover=recover)
    except DocQAError as e:
        raise http_error(e) from e


@router.get("/{document_id}/status", response_model=DocumentStatusView)
async def get_document_status(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> DocumentStatusView:
    """Status, chunk count and processing error for polling."""
    try:
        return await service.get_status(document_id, ctx=ctx, session=session)
    except DocQAError as e:
        raise http_error(e) from e
