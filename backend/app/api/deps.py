"""FastAPI dependency providers for collaborators.

Tests replace these through ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends

from backend.app.adapters.blob_store import BlobStore, create_blob_store
from backend.app.adapters.extraction import DocumentTextExtractor, TextExtractor
from backend.app.config import Settings, get_settings
from backend.app.db.engine import get_session_factory
from backend.app.docs.dispatcher import get_dispatcher
from backend.app.docs.ingest import IngestionService
from backend.app.llm.client import LLMClient, get_llm_client

_blob_store: BlobStore | None = None
_llm_client: LLMClient | None = None


def get_app_settings() -> Settings:
    """Settings dependency."""
    return get_settings()


def get_blob_store() -> BlobStore:
    """Get global blob store instance."""
    global _blob_store
    if _blob_store is None:
        _blob_store = create_blob_store(get_settings())
    return _blob_store


def get_extractor() -> TextExtractor:
    """Text extractor dependency."""
    return DocumentTextExtractor()


def get_llm() -> LLMClient:
    """Get global LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = get_llm_client(get_settings())
    return _llm_client


def get_ingestion_service(
    settings: Annotated[Settings, Depends(get_app_settings)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    extractor: Annotated[TextExtractor, Depends(get_extractor)],
    llm: Annotated[LLMClient, Depends(get_llm)],
) -> IngestionService:
    """Ingestion service wired to the global session factory and dispatcher."""
    return IngestionService(
        session_factory=get_session_factory(),
        blob_store=blob_store,
        extractor=extractor,
        embedder=llm,
        dispatcher=get_dispatcher(),
        settings=settings,
    )
