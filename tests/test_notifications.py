"""
Notification directory: targeting, visibility, read/hide and counters.
"""
import unittest
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError as PydanticValidationError

from errors import NotFoundError
from models.enums import NotificationType, Priority, TargetType
from schemas.notification import NotificationCreate
from tests.support import ADMIN, OTHER_STUDENT, OWNER, REVIEWER, StoreTestCase


def _note(**kwargs):
    data = {"target_type": TargetType.ALL, "title": "Hello", "message": "Body"}
    data.update(kwargs)
    return NotificationCreate(**data)


class TestNotificationCreate(unittest.TestCase):
    def test_user_target_requires_user_id(self):
        with self.assertRaises(PydanticValidationError):
            NotificationCreate(targetType="user", title="t", message="m")

    def test_role_target_rejects_user_id(self):
        with self.assertRaises(PydanticValidationError):
            NotificationCreate(targetType="role", targetRole="reviewer", targetUserId="u1", title="t", message="m")

    def test_all_target_takes_no_recipient(self):
        with self.assertRaises(PydanticValidationError):
            NotificationCreate(targetType="all", targetRole="reviewer", title="t", message="m")
        note = NotificationCreate(targetType="all", title="t", message="m")
        self.assertEqual(note.priority, Priority.NORMAL)


class TestNotificationDirectory(StoreTestCase):
    async def test_visibility_by_target(self):
        await self.notifications.create(_note(target_type=TargetType.USER, target_user_id=OWNER.user_id, title="mine"))
        await self.notifications.create(_note(target_type=TargetType.ROLE, target_role="reviewer", title="review"))
        await self.notifications.create(_note(title="everyone"))

        titles = lambda items: sorted(n.title for n in items)  # noqa: E731
        self.assertEqual(titles(await self.notifications.list_for(OWNER)), ["everyone", "mine"])
        self.assertEqual(titles(await self.notifications.list_for(OTHER_STUDENT)), ["everyone"])
        self.assertEqual(titles(await self.notifications.list_for(REVIEWER)), ["everyone", "review"])
        # Every reviewing role reads reviewer notifications
        self.assertEqual(titles(await self.notifications.list_for(ADMIN)), ["everyone", "review"])

    async def test_default_expiry_and_expired_are_hidden(self):
        fresh = await self.notifications.create(_note(title="fresh"))
        self.assertIsNotNone(fresh.expires_at)
        await self.notifications.create(
            _note(title="stale", expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        )
        self.assertEqual([n.title for n in await self.notifications.list_for(OWNER)], ["fresh"])

    async def test_mark_read_and_counts(self):
        first = await self.notifications.create(_note(title="a", priority=Priority.URGENT))
        await self.notifications.create(_note(title="b", priority=Priority.HIGH))
        self.assertEqual(await self.notifications.unread_count(OWNER), 2)

        read = await self.notifications.mark_read(first.id, OWNER)
        self.assertTrue(read.is_read)
        self.assertIsNotNone(read.read_at)
        self.assertEqual(await self.notifications.unread_count(OWNER), 1)
        self.assertEqual(
            await self.notifications.stats(OWNER),
            {"total": 2, "unread": 1, "read": 1, "urgent": 1, "highPriority": 1},
        )

    async def test_mark_all_read(self):
        await self.notifications.create(_note(title="a"))
        await self.notifications.create(_note(title="b"))
        self.assertEqual(await self.notifications.mark_all_read(OWNER), 2)
        self.assertEqual(await self.notifications.unread_count(OWNER), 0)
        self.assertEqual(await self.notifications.mark_all_read(OWNER), 0)

    async def test_hide_removes_from_listing(self):
        note = await self.notifications.create(_note())
        await self.notifications.hide(note.id, OWNER)
        self.assertEqual(await self.notifications.list_for(OWNER), [])
        with self.assertRaises(NotFoundError):
            await self.notifications.mark_read(note.id, OWNER)

    async def test_cannot_read_someone_elses_notification(self):
        note = await self.notifications.create(_note(target_type=TargetType.USER, target_user_id=OWNER.user_id))
        with self.assertRaises(NotFoundError):
            await self.notifications.mark_read(note.id, OTHER_STUDENT)

    async def test_filters_and_paging(self):
        for i in range(3):
            await self.notifications.create(_note(title=f"n{i}", notification_type=NotificationType.SYSTEM_ANNOUNCEMENT))
        await self.notifications.create(_note(title="urgent", priority=Priority.URGENT))

        urgent = await self.notifications.list_for(OWNER, priority=Priority.URGENT)
        self.assertEqual([n.title for n in urgent], ["urgent"])
        self.assertEqual(len(await self.notifications.list_for(OWNER, page=2, limit=3)), 1)


if __name__ == "__main__":
    unittest.main()
