"""
Persistence coordinator: section saves, attachments across both stores,
merged reads and explicit reconciliation.
"""
import unittest
from unittest import mock

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import (
    ConsistencyError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    StateTransitionError,
    ValidationError,
)
from models.enums import EventType, FileRole, ProposalStatus, Section, WizardStep
from services.coordinator import ATTACHMENTS
from tests.support import ORG_INFO, OTHER_STUDENT, OWNER, PDF, REVIEWER, SCHOOL_EVENT, StoreTestCase

VALID_SECTIONS = {s.value for s in Section}


class TestDrafts(StoreTestCase):
    async def test_create_draft_assigns_canonical_id(self):
        draft = await self.new_draft()
        self.assertEqual(len(draft.id), 36)
        self.assertEqual(draft.status, ProposalStatus.DRAFT)
        self.assertEqual(draft.current_section, Section.OVERVIEW)
        self.assertEqual(draft.original_descriptive_id, "school-event")

    async def test_navigation_persists_section(self):
        draft = await self.new_draft()
        result = await self.coordinator.navigate(draft.id, "start", OWNER)
        self.assertEqual(result.target, WizardStep.EVENT_TYPE_SELECTION)
        result = await self.coordinator.navigate(
            draft.id, "select_event_type", OWNER, step=WizardStep.EVENT_TYPE_SELECTION, event_type="community"
        )
        proposal = await self.coordinator.load(draft.id)
        self.assertEqual(proposal.current_section, Section.ORG_INFO)
        self.assertEqual(proposal.event_type, EventType.COMMUNITY_BASED)

    async def test_client_step_must_match_stored_section(self):
        draft = await self.new_draft()
        with self.assertRaises(StateTransitionError):
            await self.coordinator.navigate(draft.id, "next", OWNER, step=WizardStep.ORG_INFO)

    async def test_other_students_cannot_touch_a_draft(self):
        draft = await self.new_draft()
        with self.assertRaises(PermissionDeniedError):
            await self.coordinator.save_section(draft.id, Section.ORG_INFO, ORG_INFO, OTHER_STUDENT)
        # Reviewers only see proposals once they leave draft
        with self.assertRaises(PermissionDeniedError):
            await self.coordinator.get_proposal(draft.id, REVIEWER)


class TestSectionSaves(StoreTestCase):
    async def test_save_returns_id_and_completion(self):
        draft = await self.new_draft()
        result = await self.coordinator.save_section(draft.id, "orgInfo", ORG_INFO, OWNER)
        self.assertEqual(result.id, draft.id)
        self.assertEqual(result.completion_percentage, 25)

    async def test_missing_contact_email_rejects_advance_and_keeps_section(self):
        draft = await self.new_draft()
        await self.coordinator.save_section(draft.id, Section.ORG_INFO, {}, OWNER)
        before = (await self.coordinator.load(draft.id)).current_section

        with self.assertRaises(ValidationError) as ctx:
            await self.coordinator.save_section(
                draft.id, Section.ORG_INFO, {**ORG_INFO, "contactEmail": ""}, OWNER, advance=True
            )
        self.assertEqual(ctx.exception.missing_fields, ["contactEmail"])
        proposal = await self.coordinator.load(draft.id)
        self.assertEqual(proposal.current_section, before)
        # Nothing from the rejected save was written
        self.assertIsNone(proposal.organization_name)

    async def test_advance_moves_to_event_section(self):
        draft = await self.new_draft(event_type=EventType.COMMUNITY_BASED)
        result = await self.coordinator.save_section(draft.id, Section.ORG_INFO, ORG_INFO, OWNER, advance=True)
        self.assertEqual(result.current_section, Section.COMMUNITY_EVENT)

    async def test_wrong_event_section_for_event_type(self):
        draft = await self.new_draft(event_type=EventType.SCHOOL_BASED)
        with self.assertRaises(ValidationError):
            await self.coordinator.save_section(draft.id, Section.COMMUNITY_EVENT, {"eventName": "x"}, OWNER)

    async def test_malformed_fields_are_field_errors(self):
        draft = await self.new_draft()
        with self.assertRaises(ValidationError) as ctx:
            await self.coordinator.save_section(
                draft.id, Section.SCHOOL_EVENT, {"eventStartTime": "25:99", "credits": "7"}, OWNER
            )
        self.assertIn("eventStartTime", ctx.exception.field_errors)
        self.assertIn("credits", ctx.exception.field_errors)

    async def test_unknown_section_name_is_rejected(self):
        draft = await self.new_draft()
        with self.assertRaises(ValidationError):
            await self.coordinator.save_section(draft.id, "submitted", {}, OWNER)

    async def test_completion_never_decreases(self):
        draft = await self.new_draft()
        seen = []
        for section, fields in (
            (Section.ORG_INFO, ORG_INFO),
            (Section.SCHOOL_EVENT, {"eventName": "Coding Cup"}),
            (Section.ORG_INFO, {"organizationDescription": "Student org"}),
            (Section.SCHOOL_EVENT, SCHOOL_EVENT),
        ):
            seen.append((await self.coordinator.save_section(draft.id, section, fields, OWNER)).completion_percentage)
        self.assertEqual(seen, sorted(seen))
        self.assertTrue(all(0 <= p <= 100 for p in seen))

    async def test_completion_survives_clearing_a_field(self):
        draft = await self.new_draft()
        first = await self.coordinator.save_section(draft.id, Section.ORG_INFO, ORG_INFO, OWNER)
        second = await self.coordinator.save_section(draft.id, Section.ORG_INFO, {"contactName": ""}, OWNER)
        self.assertEqual(second.completion_percentage, first.completion_percentage)

    async def test_reporting_is_locked_until_approved(self):
        draft = await self.new_draft()
        with self.assertRaises(StateTransitionError):
            await self.coordinator.save_section(draft.id, Section.REPORTING, {"attendanceCount": 10}, OWNER)

    async def test_completing_reporting_after_approval_stays_on_reporting(self):
        draft = await self.complete_school_proposal()
        await self.status.submit(draft.id, OWNER)
        await self.status.review(draft.id, "approved", REVIEWER)
        report = {"attendanceCount": 50, "reportEventStatus": "completed"}

        with self.assertRaises(ValidationError) as ctx:
            await self.coordinator.save_section(draft.id, Section.REPORTING, report, OWNER, advance=True)
        self.assertEqual(list(ctx.exception.missing_fields), ["accomplishmentReport"])

        await self.coordinator.attach_file(
            draft.id, FileRole.ACCOMPLISHMENT_REPORT, PDF + b"report", "report.pdf", "application/pdf", OWNER
        )
        result = await self.coordinator.save_section(draft.id, Section.REPORTING, report, OWNER, advance=True)
        self.assertEqual(result.current_section, Section.REPORTING)
        self.assertEqual((await self.coordinator.load(draft.id)).attendance_count, 50)

    async def test_switching_event_type_clears_choices_it_does_not_offer(self):
        draft = await self.complete_school_proposal()
        proposal = await self.coordinator.set_event_type(draft.id, EventType.COMMUNITY_BASED, OWNER)
        self.assertIsNone(proposal.event_category)
        # "2" is offered for both event types
        self.assertEqual(proposal.credits, "2")

        with self.assertRaises(ValidationError) as ctx:
            await self.status.submit(draft.id, OWNER)
        self.assertIn("eventCategory", ctx.exception.missing_fields)
        self.assertEqual((await self.coordinator.load(draft.id)).status, ProposalStatus.DRAFT)

    async def test_submit_rejects_category_of_another_event_type(self):
        draft = await self.complete_school_proposal()
        proposal = await self.coordinator.load(draft.id)
        proposal.event_type = EventType.COMMUNITY_BASED
        await self.session.flush()

        with self.assertRaises(ValidationError) as ctx:
            await self.status.submit(draft.id, OWNER)
        self.assertIn("not offered", ctx.exception.field_errors["eventCategory"])

    async def test_current_section_is_always_a_member(self):
        draft = await self.complete_school_proposal()
        for section in (Section.ORG_INFO, Section.SCHOOL_EVENT):
            await self.coordinator.save_section(draft.id, section, {}, OWNER, advance=True)
            proposal = await self.coordinator.load(draft.id)
            self.assertIn(proposal.current_section.value, VALID_SECTIONS)


class TestClosedSectionEnum(StoreTestCase):
    async def test_write_section_rejects_non_member(self):
        draft = await self.new_draft()
        with self.assertRaises(ValidationError):
            self.coordinator.write_section(draft, "submitted")
        self.assertEqual(draft.current_section, Section.OVERVIEW)

    async def test_model_rejects_non_member(self):
        draft = await self.new_draft()
        with self.assertRaises(ValueError):
            draft.current_section = "submitted"

    async def test_check_constraint_rejects_raw_write(self):
        draft = await self.new_draft()
        await self.session.commit()
        with self.assertRaises(IntegrityError):
            await self.session.execute(
                text("UPDATE proposals SET current_section = 'submitted' WHERE id = :id"), {"id": draft.id}
            )
        await self.session.rollback()


class TestAttachments(StoreTestCase):
    async def test_file_requires_existing_proposal(self):
        with self.assertRaises(NotFoundError):
            await self.coordinator.attach_file("missing", "gpoa", PDF, "gpoa.pdf", "application/pdf", OWNER)
        self.assertEqual(await self.documents.find(ATTACHMENTS), [])

    async def test_second_upload_for_same_role_replaces_metadata(self):
        draft = await self.new_draft()
        await self.coordinator.attach_file(draft.id, FileRole.GPOA, PDF + b"v1", "v1.pdf", "application/pdf", OWNER)
        first = await self.coordinator.attachments_for(draft.id)
        await self.coordinator.attach_file(draft.id, FileRole.GPOA, PDF + b"v2", "v2.pdf", "application/pdf", OWNER)

        records = await self.coordinator.attachments_for(draft.id)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["originalName"], "v2.pdf")
        # The superseded blob is released
        self.assertFalse(self.blobs.exists(first[0]["storageLocator"]))
        proposal = await self.coordinator.load(draft.id)
        self.assertEqual(proposal.declared_attachments, ["gpoa"])

    async def test_count_referencing_matches_json_field(self):
        await self.documents.put(ATTACHMENTS, "a:gpoa", {"role": "gpoa", "storageLocator": "sha256:aa"}, owner_ref="a")
        await self.documents.put(ATTACHMENTS, "b:gpoa", {"role": "gpoa", "storageLocator": "sha256:aa"}, owner_ref="b")
        await self.documents.put(ATTACHMENTS, "c:gpoa", {"role": "gpoa", "storageLocator": "sha256:bb"}, owner_ref="c")
        self.assertEqual(await self.documents.count_referencing(ATTACHMENTS, "storageLocator", "sha256:aa"), 2)
        self.assertEqual(await self.documents.count_referencing(ATTACHMENTS, "storageLocator", "sha256:cc"), 0)
        self.assertEqual(await self.documents.count_referencing("other", "storageLocator", "sha256:aa"), 0)

    async def test_rejects_unsupported_type_and_role(self):
        draft = await self.new_draft()
        with self.assertRaises(ValidationError):
            await self.coordinator.attach_file(draft.id, "gpoa", b"MZ", "x.exe", "application/x-msdownload", OWNER)
        with self.assertRaises(ValidationError):
            await self.coordinator.attach_file(draft.id, "selfie", PDF, "x.pdf", "application/pdf", OWNER)

    async def test_read_attachment_returns_bytes(self):
        draft = await self.new_draft()
        await self.coordinator.attach_file(draft.id, "gpoa", PDF + b"abc", "gpoa.pdf", "application/pdf", OWNER)
        document, data = await self.coordinator.read_attachment(draft.id, "gpoa", OWNER)
        self.assertEqual(data, PDF + b"abc")
        self.assertEqual(document["sizeBytes"], len(PDF) + 3)


class TestMergedReads(StoreTestCase):
    async def test_get_proposal_tags_data_source(self):
        draft = await self.new_draft()
        view = await self.coordinator.get_proposal(draft.id, OWNER)
        self.assertEqual(view["dataSource"], "relational-only")
        self.assertEqual(view["consistencyIssues"], [])

        await self.coordinator.attach_file(draft.id, "gpoa", PDF, "gpoa.pdf", "application/pdf", OWNER)
        view = await self.coordinator.get_proposal(draft.id, OWNER)
        self.assertEqual(view["dataSource"], "hybrid")
        self.assertNotIn("storageLocator", view["attachments"][0])

    async def test_admin_view_relational_only_is_not_an_error(self):
        draft = await self.new_draft()
        draft.status = ProposalStatus.PENDING
        await self.session.flush()

        page = await self.coordinator.get_admin_view()
        self.assertEqual(page["pagination"]["totalCount"], 1)
        self.assertEqual(page["data"][0]["id"], draft.id)
        self.assertEqual(page["data"][0]["dataSource"], "relational-only")

    async def test_admin_view_excludes_drafts_and_filters(self):
        submitted = await self.complete_school_proposal()
        await self.status.submit(submitted.id, OWNER)
        await self.new_draft()

        page = await self.coordinator.get_admin_view(search="computer")
        self.assertEqual([p["id"] for p in page["data"]], [submitted.id])
        self.assertEqual(page["data"][0]["dataSource"], "hybrid")
        empty = await self.coordinator.get_admin_view(event_type=EventType.COMMUNITY_BASED)
        self.assertEqual(empty["data"], [])

    async def test_admin_search_treats_wildcards_literally(self):
        submitted = await self.complete_school_proposal()
        await self.status.submit(submitted.id, OWNER)
        for term in ("%", "_", "Computer_Society"):
            with self.subTest(term=term):
                page = await self.coordinator.get_admin_view(search=term)
                self.assertEqual(page["data"], [])
        page = await self.coordinator.get_admin_view(search="Computer Society")
        self.assertEqual(page["filters"]["search"], "Computer Society")
        self.assertEqual(len(page["data"]), 1)

    async def test_orphaned_metadata_raises_consistency_error(self):
        await self.documents.put(
            ATTACHMENTS,
            "ghost:gpoa",
            {"ownerProposalId": "ghost", "role": "gpoa", "storageLocator": self.blobs.put(PDF)},
            owner_ref="ghost",
        )
        with self.assertRaises(ConsistencyError) as ctx:
            await self.coordinator.get_proposal("ghost", OWNER)
        self.assertEqual(ctx.exception.issues[0]["type"], "orphaned_metadata")

    async def test_missing_proposal_is_not_found(self):
        with self.assertRaises(NotFoundError):
            await self.coordinator.get_proposal("nope", OWNER)


class TestInspectAndReconcile(StoreTestCase):
    async def _undeclared_attachment(self):
        """Simulate a crash between the metadata upsert and the row update."""
        draft = await self.new_draft()
        locator = self.blobs.put(PDF)
        await self.documents.put(
            ATTACHMENTS,
            f"{draft.id}:gpoa",
            {"ownerProposalId": draft.id, "role": "gpoa", "storageLocator": locator, "originalName": "g.pdf"},
            owner_ref=draft.id,
        )
        return draft

    async def test_inspect_reports_undeclared_metadata(self):
        draft = await self._undeclared_attachment()
        report = await self.coordinator.inspect(draft.id)
        self.assertFalse(report["consistent"])
        self.assertEqual(report["issues"], [{"type": "undeclared_metadata", "roles": ["gpoa"]}])
        self.assertTrue(report["relational"]["found"])
        self.assertEqual(report["documents"]["attachments"], ["gpoa"])

    async def test_inspect_reports_missing_metadata(self):
        draft = await self.new_draft()
        draft.declared_attachments = ["gpoa"]
        await self.session.flush()
        report = await self.coordinator.inspect(draft.id)
        self.assertEqual(report["issues"], [{"type": "missing_metadata", "roles": ["gpoa"]}])

    async def test_reads_never_repair(self):
        draft = await self._undeclared_attachment()
        await self.coordinator.get_proposal(draft.id, OWNER)
        await self.coordinator.inspect(draft.id)
        self.assertEqual(len(await self.coordinator.attachments_for(draft.id)), 1)
        self.assertEqual((await self.coordinator.load(draft.id)).declared_attachments, [])

    async def test_adopt_stored(self):
        draft = await self._undeclared_attachment()
        report = await self.coordinator.reconcile(draft.id, "adopt_stored", REVIEWER)
        self.assertTrue(report["consistent"])
        self.assertEqual((await self.coordinator.load(draft.id)).declared_attachments, ["gpoa"])

    async def test_purge_orphans(self):
        draft = await self._undeclared_attachment()
        report = await self.coordinator.reconcile(draft.id, "purge_orphans", REVIEWER)
        self.assertTrue(report["consistent"])
        self.assertEqual(await self.coordinator.attachments_for(draft.id), [])

    async def test_reconcile_requires_reviewer(self):
        draft = await self._undeclared_attachment()
        with self.assertRaises(PermissionDeniedError):
            await self.coordinator.reconcile(draft.id, "purge_orphans", OWNER)


class TestDeletion(StoreTestCase):
    async def test_delete_cascades_to_both_stores(self):
        draft = await self.complete_school_proposal()
        locators = [d["storageLocator"] for d in await self.coordinator.attachments_for(draft.id)]
        await self.coordinator.delete_proposal(draft.id, OWNER)

        self.assertEqual(await self.coordinator.attachments_for(draft.id), [])
        self.assertFalse(any(self.blobs.exists(loc) for loc in locators))
        with self.assertRaises(NotFoundError):
            await self.coordinator.load(draft.id)

    async def test_reviewer_cannot_delete_someone_elses_draft(self):
        draft = await self.new_draft()
        with self.assertRaises(PermissionDeniedError):
            await self.coordinator.delete_proposal(draft.id, REVIEWER)
        self.assertEqual((await self.coordinator.load(draft.id)).id, draft.id)

    async def test_reviewer_can_delete_submitted_proposal(self):
        draft = await self.complete_school_proposal()
        await self.status.submit(draft.id, OWNER)
        await self.coordinator.delete_proposal(draft.id, REVIEWER)
        with self.assertRaises(NotFoundError):
            await self.coordinator.load(draft.id)

    async def test_files_survive_failed_relational_delete(self):
        draft = await self.complete_school_proposal()
        locators = [d["storageLocator"] for d in await self.coordinator.attachments_for(draft.id)]
        failing = mock.AsyncMock(side_effect=SQLAlchemyError("disk full"))

        with mock.patch.object(self.session, "flush", failing), self.assertLogs("services.coordinator", "ERROR"):
            with self.assertRaises(PersistenceError):
                await self.coordinator.delete_proposal(draft.id, OWNER)

        self.assertEqual(len(await self.coordinator.attachments_for(draft.id)), 2)
        self.assertTrue(all(self.blobs.exists(loc) for loc in locators))

    async def test_shared_blob_survives_other_proposal_delete(self):
        first = await self.new_draft()
        second = await self.new_draft()
        await self.coordinator.attach_file(first.id, "gpoa", PDF, "a.pdf", "application/pdf", OWNER)
        await self.coordinator.attach_file(second.id, "gpoa", PDF, "b.pdf", "application/pdf", OWNER)
        await self.coordinator.delete_proposal(first.id, OWNER)
        _, data = await self.coordinator.read_attachment(second.id, "gpoa", OWNER)
        self.assertEqual(data, PDF)


if __name__ == "__main__":
    unittest.main()
