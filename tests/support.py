"""
Shared fixtures: a fresh in-memory relational store, document store and blob
directory per test, with the services wired the same way the API wires them.
"""
import tempfile
import unittest

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import models  # noqa: F401  (registers tables on Base.metadata)
from database import Base, engine_kwargs_for
from models.enums import EventType, FileRole, Section
from services.actors import Actor
from services.coordinator import PersistenceCoordinator
from services.notifications import NotificationDirectory
from services.status_engine import StatusTransitionEngine
from stores import DocumentStore, LocalBlobStore

MEMORY_URL = "sqlite+aiosqlite://"

OWNER = Actor(user_id="student-1", role="student")
OTHER_STUDENT = Actor(user_id="student-2", role="student")
REVIEWER = Actor(user_id="reviewer-1", role="reviewer")
ADMIN = Actor(user_id="admin-1", role="admin")

ORG_INFO = {
    "organizationName": "Computer Society",
    "organizationTypes": ["school-based"],
    "contactName": "Dana Cruz",
    "contactEmail": "dana@example.edu",
}

SCHOOL_EVENT = {
    "eventName": "Intramural Coding Cup",
    "eventVenue": "Main Hall",
    "eventStartDate": "2026-11-20",
    "eventEndDate": "2026-11-21",
    "eventStartTime": "08:00",
    "eventEndTime": "17:00",
    "eventCategory": "competition",
    "eventMode": "offline",
    "targetAudience": ["Students", "Faculty"],
    "credits": "2",
}

PDF = b"%PDF-1.4\n"


async def create_relational_engine():
    engine = create_async_engine(MEMORY_URL, **engine_kwargs_for(MEMORY_URL))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


class StoreTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = await create_relational_engine()
        self.sessions = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
        self.session = self.sessions()
        self.documents = DocumentStore.from_url(MEMORY_URL)
        await self.documents.init()
        self._blob_dir = tempfile.TemporaryDirectory()
        self.blobs = LocalBlobStore(self._blob_dir.name)
        self.coordinator = PersistenceCoordinator(self.session, self.documents, self.blobs)
        self.notifications = NotificationDirectory(self.session)
        self.status = StatusTransitionEngine(self.session, self.coordinator, self.notifications)

    async def asyncTearDown(self):
        await self.session.close()
        await self.engine.dispose()
        await self.documents.dispose()
        self._blob_dir.cleanup()

    async def new_draft(self, event_type=EventType.SCHOOL_BASED, owner=OWNER):
        return await self.coordinator.create_draft(owner.user_id, event_type, "school-event")

    async def complete_school_proposal(self, owner=OWNER):
        """Draft with orgInfo, schoolEvent and both required files; ready to submit."""
        draft = await self.new_draft(owner=owner)
        await self.coordinator.save_section(draft.id, Section.ORG_INFO, ORG_INFO, owner)
        await self.coordinator.save_section(draft.id, Section.SCHOOL_EVENT, SCHOOL_EVENT, owner)
        await self.coordinator.attach_file(draft.id, FileRole.GPOA, PDF + b"gpoa", "gpoa.pdf", "application/pdf", owner)
        await self.coordinator.attach_file(
            draft.id, FileRole.PROJECT_PROPOSAL, PDF + b"proposal", "proposal.pdf", "application/pdf", owner
        )
        return draft
