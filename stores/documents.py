"""
Document store for unstructured records (file attachment metadata).

Backed by its own async engine and database, separate from the relational
proposal store: nothing written here shares a transaction with ``database.py``.
Documents are JSON bodies addressed by ``(collection, key)`` and optionally
tagged with an ``owner_ref`` used for lookups by owning record.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, JSON, String, delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from database import engine_kwargs_for
from errors import PersistenceError

logger = logging.getLogger(__name__)


class DocumentBase(DeclarativeBase):
    pass


class DocumentRecord(DocumentBase):
    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    doc_key = Column(String(255), primary_key=True)
    owner_ref = Column(String(64), nullable=True, index=True)
    body = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class DocumentStore:
    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> "DocumentStore":
        return cls(create_async_engine(url, **engine_kwargs_for(url)))

    async def init(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(DocumentBase.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    def _insert(self):
        if self._engine.dialect.name == "postgresql":
            return postgresql.insert(DocumentRecord)
        return sqlite.insert(DocumentRecord)

    async def put(self, collection: str, key: str, body: dict[str, Any], owner_ref: str | None = None) -> dict[str, Any]:
        """Insert or replace the document at ``(collection, key)``."""
        now = datetime.now(timezone.utc)
        stmt = self._insert().values(
            collection=collection,
            doc_key=key,
            owner_ref=owner_ref,
            body=body,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[DocumentRecord.collection, DocumentRecord.doc_key],
            set_={"owner_ref": owner_ref, "body": body, "updated_at": now},
        )
        try:
            async with self._sessions.begin() as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Document write failed for %s/%s: %s", collection, key, e)
            raise PersistenceError(f"Document store write failed: {e}", store="documents") from e
        return body

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    select(DocumentRecord.body).where(
                        DocumentRecord.collection == collection,
                        DocumentRecord.doc_key == key,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Document store read failed: {e}", store="documents") from e

    async def find(self, collection: str, owner_ref: str | None = None) -> list[dict[str, Any]]:
        query = select(DocumentRecord.body).where(DocumentRecord.collection == collection)
        if owner_ref is not None:
            query = query.where(DocumentRecord.owner_ref == owner_ref)
        try:
            async with self._sessions() as session:
                result = await session.execute(query.order_by(DocumentRecord.doc_key))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Document store read failed: {e}", store="documents") from e

    async def count_referencing(self, collection: str, path: str, value: str) -> int:
        """Count documents whose top-level ``path`` equals ``value``."""
        query = select(func.count()).select_from(DocumentRecord).where(
            DocumentRecord.collection == collection,
            DocumentRecord.body[path].as_string() == value,
        )
        try:
            async with self._sessions() as session:
                return (await session.execute(query)).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Document store read failed: {e}", store="documents") from e

    async def delete(self, collection: str, key: str) -> bool:
        try:
            async with self._sessions.begin() as session:
                result = await session.execute(
                    delete(DocumentRecord).where(
                        DocumentRecord.collection == collection,
                        DocumentRecord.doc_key == key,
                    )
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"Document store delete failed: {e}", store="documents") from e

    async def delete_owned_by(self, collection: str, owner_ref: str) -> int:
        try:
            async with self._sessions.begin() as session:
                result = await session.execute(
                    delete(DocumentRecord).where(
                        DocumentRecord.collection == collection,
                        DocumentRecord.owner_ref == owner_ref,
                    )
                )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"Document store delete failed: {e}", store="documents") from e
