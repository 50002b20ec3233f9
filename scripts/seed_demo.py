"""
Seed demo proposals: one school-based draft in progress and one community-based
proposal submitted for review with its attachments.
Run: python -m scripts.seed_demo (from the project root).
"""
import asyncio
import os
import sys

# Add parent so project modules import when run as a script
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import AsyncSessionLocal, init_db
from models.enums import EventType, FileRole, Section
from services.actors import Actor
from services.coordinator import PersistenceCoordinator
from services.notifications import NotificationDirectory
from services.status_engine import StatusTransitionEngine
from stores import DocumentStore, LocalBlobStore

STUDENT = Actor(user_id="demo-student", role="student")

ORG_INFO = {
    "organizationName": "Computer Society",
    "organizationTypes": ["school-based"],
    "contactName": "Dana Cruz",
    "contactEmail": "dana.cruz@example.edu",
}

COMMUNITY_EVENT = {
    "eventName": "Barangay Literacy Seminar",
    "eventVenue": "Riverside Covered Court",
    "eventStartDate": "2026-11-14",
    "eventEndDate": "2026-11-14",
    "eventStartTime": "07:00",
    "eventEndTime": "12:00",
    "eventCategory": "seminar-webinar",
    "eventMode": "offline",
    "targetAudience": ["Students", "Faculty", "Community"],
    "credits": "1",
}

PDF_BYTES = b"%PDF-1.4\n% demo attachment\n"


async def seed():
    await init_db()
    documents = DocumentStore.from_url(settings.document_store_url)
    await documents.init()
    blobs = LocalBlobStore(settings.blob_storage_dir)
    try:
        async with AsyncSessionLocal() as session:
            coordinator = PersistenceCoordinator(session, documents, blobs)

            draft = await coordinator.create_draft(STUDENT.user_id, EventType.SCHOOL_BASED, "school-event")
            await coordinator.save_section(draft.id, Section.ORG_INFO, ORG_INFO, STUDENT)

            proposal = await coordinator.create_draft(STUDENT.user_id, EventType.COMMUNITY_BASED, "community-event")
            await coordinator.save_section(proposal.id, Section.ORG_INFO, ORG_INFO, STUDENT, advance=True)
            for role in (FileRole.GPOA, FileRole.PROJECT_PROPOSAL):
                await coordinator.attach_file(
                    proposal.id, role, PDF_BYTES + role.value.encode(), f"{role.value}.pdf", "application/pdf", STUDENT
                )
            await coordinator.save_section(proposal.id, Section.COMMUNITY_EVENT, COMMUNITY_EVENT, STUDENT, advance=True)

            engine = StatusTransitionEngine(session, coordinator, NotificationDirectory(session))
            await engine.submit(proposal.id, STUDENT)
            await session.commit()
            print(f"Draft in progress: {draft.id}")
            print(f"Submitted for review: {proposal.id}")
    finally:
        await documents.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
