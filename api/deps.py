"""Request-scoped wiring: acting user and service objects built around one DB session."""
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import AuthenticationRequiredError
from services.actors import Actor
from services.coordinator import PersistenceCoordinator
from services.notifications import NotificationDirectory
from services.status_engine import StatusTransitionEngine
from stores.blobs import LocalBlobStore
from stores.documents import DocumentStore


async def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    # Authentication happens in front of this service; it forwards the user in headers
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationRequiredError("X-User-Id header is required")
    role = (x_user_role or "student").strip() or "student"
    return Actor(user_id=x_user_id.strip(), role=role)


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.documents


def get_blob_store(request: Request) -> LocalBlobStore:
    return request.app.state.blobs


def get_coordinator(
    db: AsyncSession = Depends(get_db),
    documents: DocumentStore = Depends(get_document_store),
    blobs: LocalBlobStore = Depends(get_blob_store),
) -> PersistenceCoordinator:
    return PersistenceCoordinator(db, documents, blobs)


def get_notifications(db: AsyncSession = Depends(get_db)) -> NotificationDirectory:
    return NotificationDirectory(db)


def get_status_engine(
    db: AsyncSession = Depends(get_db),
    coordinator: PersistenceCoordinator = Depends(get_coordinator),
    notifications: NotificationDirectory = Depends(get_notifications),
) -> StatusTransitionEngine:
    return StatusTransitionEngine(db, coordinator, notifications)
