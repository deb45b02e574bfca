"""Tests for segment persistence and evaluation of saved segments."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from contact_segments.exceptions import EvaluationError, NotFoundError, ValidationError
from contact_segments.models import Contact, ContactList, ContactListMembership
from contact_segments.services.segments import CONTACT_FIELDS, SegmentStore


ACME = [{"id": "c1", "field": "companyName", "operator": "equals", "value": "Acme", "logicalOperator": None}]


@pytest.fixture
def store(test_db):
    return SegmentStore(test_db)


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_dynamic(self, store, org_a):
        segment = await store.create(org_a.id, "Acme people", ACME)

        assert segment.id is not None
        assert segment.type == "dynamic"
        assert segment.organization_id == org_a.id
        assert segment.criteria == {"conditions": ACME}
        assert segment.created_at is not None

    @pytest.mark.asyncio
    async def test_name_trimmed(self, store, org_a):
        segment = await store.create(org_a.id, "  Acme  ", ACME)
        assert segment.name == "Acme"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", "x" * 256])
    async def test_bad_name(self, store, org_a, name):
        with pytest.raises(ValidationError):
            await store.create(org_a.id, name, ACME)

    @pytest.mark.asyncio
    async def test_invalid_criteria_not_saved(self, test_db, store, org_a):
        bad = [{"id": "x9", "field": "phone", "operator": "equals", "value": "1"}]

        with pytest.raises(ValidationError) as exc_info:
            await store.create(org_a.id, "Phones", bad)
        assert exc_info.value.condition_id == "x9"

        result = await test_db.execute(select(ContactList))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_dynamic_requires_conditions(self, store, org_a):
        with pytest.raises(ValidationError):
            await store.create(org_a.id, "Empty", None)
        with pytest.raises(ValidationError):
            await store.create(org_a.id, "Empty", [])

    @pytest.mark.asyncio
    async def test_duplicate_name_in_org(self, store, org_a, org_b):
        await store.create(org_a.id, "VIPs", ACME)

        with pytest.raises(ValidationError) as exc_info:
            await store.create(org_a.id, "VIPs", ACME)
        assert "already exists" in exc_info.value.detail

        other = await store.create(org_b.id, "VIPs", ACME)
        assert other.organization_id == org_b.id

    @pytest.mark.asyncio
    async def test_name_taken_between_check_and_commit(self, test_db, store, org_a, monkeypatch):
        await store.create(org_a.id, "Racing", ACME)

        async def name_looks_free(organization_id, name):
            return None

        racer = SegmentStore(test_db)
        monkeypatch.setattr(racer, "_check_name_free", name_looks_free)

        with pytest.raises(ValidationError) as exc_info:
            await racer.create(org_a.id, "Racing", ACME)
        assert "already exists" in exc_info.value.detail

        assert [s.name for s in await store.list(org_a.id)] == ["Racing"]

    @pytest.mark.asyncio
    async def test_unknown_type(self, store, org_a):
        with pytest.raises(ValidationError):
            await store.create(org_a.id, "Odd", ACME, segment_type="smart")

    @pytest.mark.asyncio
    async def test_static_rejects_conditions(self, store, org_a):
        with pytest.raises(ValidationError):
            await store.create(org_a.id, "Hand picked", ACME, segment_type="static")

        segment = await store.create(org_a.id, "Hand picked", segment_type="static")
        assert segment.criteria is None


class TestReadUpdateDelete:

    @pytest.mark.asyncio
    async def test_get_other_org_is_not_found(self, store, org_a, org_b):
        segment = await store.create(org_a.id, "Mine", ACME)

        assert (await store.get(segment.id, org_a.id)).id == segment.id
        with pytest.raises(NotFoundError):
            await store.get(segment.id, org_b.id)
        with pytest.raises(NotFoundError):
            await store.get(segment.id + 100, org_a.id)

    @pytest.mark.asyncio
    async def test_list_scoped_and_filtered(self, store, org_a, org_b):
        first = await store.create(org_a.id, "First", ACME)
        second = await store.create(org_a.id, "Second", segment_type="static")
        await store.create(org_b.id, "Theirs", ACME)

        assert [s.id for s in await store.list(org_a.id)] == [first.id, second.id]
        assert [s.id for s in await store.list(org_a.id, segment_type="static")] == [second.id]

    @pytest.mark.asyncio
    async def test_update_replaces_criteria_wholesale(self, store, org_a):
        segment = await store.create(
            org_a.id,
            "Two rules",
            ACME + [{"id": "c2", "field": "email", "operator": "endsWith", "value": "@x.com", "logicalOperator": None}],
        )
        replacement = [{"id": "n1", "field": "source", "operator": "equals", "value": "import", "logicalOperator": None}]

        updated = await store.update(segment.id, org_a.id, conditions=replacement)

        assert updated.criteria == {"conditions": replacement}
        assert updated.name == "Two rules"

    @pytest.mark.asyncio
    async def test_update_name_only(self, store, org_a):
        segment = await store.create(org_a.id, "Old", ACME)

        updated = await store.update(segment.id, org_a.id, name="New")

        assert updated.name == "New"
        assert updated.criteria == {"conditions": ACME}

    @pytest.mark.asyncio
    async def test_update_invalid_keeps_old(self, store, org_a):
        segment = await store.create(org_a.id, "Keep", ACME)

        with pytest.raises(ValidationError):
            await store.update(
                segment.id, org_a.id,
                conditions=[{"id": "b", "field": "createdAt", "operator": "contains", "value": "2024"}],
            )

        assert (await store.get(segment.id, org_a.id)).criteria == {"conditions": ACME}

    @pytest.mark.asyncio
    async def test_update_to_taken_name(self, store, org_a):
        await store.create(org_a.id, "Taken", ACME)
        segment = await store.create(org_a.id, "Free", ACME)

        with pytest.raises(ValidationError):
            await store.update(segment.id, org_a.id, name="Taken")

    @pytest.mark.asyncio
    async def test_update_other_org(self, store, org_a, org_b):
        segment = await store.create(org_a.id, "Mine", ACME)
        with pytest.raises(NotFoundError):
            await store.update(segment.id, org_b.id, name="Stolen")

    @pytest.mark.asyncio
    async def test_delete_keeps_contacts(self, test_db, store, org_a, make_contacts):
        await make_contacts(org_a, {"company_name": "Acme"})
        segment = await store.create(org_a.id, "Gone soon", ACME)

        await store.delete(segment.id, org_a.id)

        with pytest.raises(NotFoundError):
            await store.get(segment.id, org_a.id)
        result = await test_db.execute(select(Contact))
        assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_delete_other_org(self, store, org_a, org_b):
        segment = await store.create(org_a.id, "Mine", ACME)
        with pytest.raises(NotFoundError):
            await store.delete(segment.id, org_b.id)
        assert (await store.get(segment.id, org_a.id)).id == segment.id


class TestEvaluation:

    @pytest.mark.asyncio
    async def test_saved_segment_evaluates_like_preview(self, test_db, store, org_a, make_contacts):
        await make_contacts(
            org_a,
            {"company_name": "Acme"},
            {"company_name": "acme"},
            {"company_name": "Globex"},
        )
        segment = await store.create(org_a.id, "Acme", ACME)

        reloaded = await SegmentStore(test_db).get(segment.id, org_a.id)
        assert SegmentStore(test_db).load_criteria(reloaded).to_criteria() == segment.criteria
        assert await store.evaluate_segment(segment.id, org_a.id) == 2

    @pytest.mark.asyncio
    async def test_evaluation_tracks_contact_changes(self, store, org_a, make_contacts):
        segment = await store.create(org_a.id, "Acme", ACME)
        assert await store.evaluate_segment(segment.id, org_a.id) == 0

        await make_contacts(org_a, {"company_name": "Acme"})

        assert await store.evaluate_segment(segment.id, org_a.id) == 1

    @pytest.mark.asyncio
    async def test_segment_members_paged(self, store, org_a, make_contacts):
        contacts = await make_contacts(org_a, *[{"company_name": "Acme"} for _ in range(3)])
        segment = await store.create(org_a.id, "Acme", ACME)

        page = await store.segment_members(segment.id, org_a.id, page=1, page_size=2)

        assert page.contact_ids == sorted(c.id for c in contacts)[:2]
        assert page.total == 3
        assert page.has_more is True

    @pytest.mark.asyncio
    async def test_withdrawn_field_raises(self, test_db, store, org_a):
        segment = await store.create(org_a.id, "Acme", ACME)
        narrowed = SegmentStore(test_db, CONTACT_FIELDS.without("companyName"))

        with pytest.raises(EvaluationError) as exc_info:
            await narrowed.evaluate_segment(segment.id, org_a.id)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_legacy_bare_list_criteria(self, test_db, store, org_a, make_contacts):
        await make_contacts(
            org_a,
            {"created_at": datetime(2024, 1, 5, 12, 0)},
            {"created_at": datetime(2024, 2, 5, 12, 0)},
        )
        legacy = ContactList(
            organization_id=org_a.id,
            name="Legacy",
            type="dynamic",
            criteria=[{"id": "1", "field": "createdAt", "operator": "on", "value": "2024-01-05"}],
        )
        test_db.add(legacy)
        await test_db.commit()

        assert await store.evaluate_segment(legacy.id, org_a.id) == 1

    @pytest.mark.asyncio
    async def test_corrupt_criteria_raises(self, test_db, store, org_a):
        broken = ContactList(organization_id=org_a.id, name="Broken", type="dynamic", criteria={"rules": []})
        test_db.add(broken)
        await test_db.commit()

        with pytest.raises(EvaluationError):
            await store.evaluate_segment(broken.id, org_a.id)


class TestStaticMembership:

    @pytest.mark.asyncio
    async def test_add_and_remove(self, store, org_a, make_contacts):
        first, second, third = await make_contacts(org_a, {}, {}, {})
        segment = await store.create(org_a.id, "Picked", segment_type="static")

        assert await store.add_members(segment.id, org_a.id, [first.id, second.id]) == 2
        assert await store.add_members(segment.id, org_a.id, [second.id, third.id]) == 1
        assert await store.evaluate_segment(segment.id, org_a.id) == 3

        assert await store.remove_members(segment.id, org_a.id, [first.id]) == 1
        page = await store.segment_members(segment.id, org_a.id)
        assert page.contact_ids == sorted([second.id, third.id])

    @pytest.mark.asyncio
    async def test_foreign_contact_rejected(self, test_db, store, org_a, org_b, make_contacts):
        (mine,) = await make_contacts(org_a, {})
        (theirs,) = await make_contacts(org_b, {})
        segment = await store.create(org_a.id, "Picked", segment_type="static")

        with pytest.raises(ValidationError):
            await store.add_members(segment.id, org_a.id, [mine.id, theirs.id])

        result = await test_db.execute(select(ContactListMembership))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_dynamic_members_not_editable(self, store, org_a, make_contacts):
        (contact,) = await make_contacts(org_a, {})
        segment = await store.create(org_a.id, "Rules", ACME)

        with pytest.raises(ValidationError):
            await store.add_members(segment.id, org_a.id, [contact.id])
        with pytest.raises(ValidationError):
            await store.remove_members(segment.id, org_a.id, [contact.id])

    @pytest.mark.asyncio
    async def test_delete_removes_memberships(self, test_db, store, org_a, make_contacts):
        (contact,) = await make_contacts(org_a, {})
        segment = await store.create(org_a.id, "Picked", segment_type="static")
        await store.add_members(segment.id, org_a.id, [contact.id])

        await store.delete(segment.id, org_a.id)

        result = await test_db.execute(select(ContactListMembership))
        assert result.scalars().all() == []
        assert (await test_db.execute(select(Contact))).scalars().all() != []


class TestStorageFailure:

    @pytest.fixture
    def broken_store(self):
        db = AsyncMock()
        db.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection lost"))
        return SegmentStore(db)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("call", [
        lambda store: store.list(1),
        lambda store: store.get(1, 1),
        lambda store: store.evaluate_segment(1, 1),
        lambda store: store.segment_members(1, 1),
        lambda store: store.create(1, "New", ACME),
        lambda store: store.delete(1, 1),
        lambda store: store.add_members(1, 1, [1]),
        lambda store: store.remove_members(1, 1, [1]),
    ], ids=["list", "get", "evaluate", "members", "create", "delete", "add", "remove"])
    async def test_read_failures_are_evaluation_errors(self, broken_store, call):
        with pytest.raises(EvaluationError) as exc_info:
            await call(broken_store)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back(self, test_db, store, org_a, monkeypatch):
        rollback = AsyncMock(wraps=test_db.rollback)
        failure = OperationalError("COMMIT", {}, Exception("disk full"))
        monkeypatch.setattr(test_db, "commit", AsyncMock(side_effect=failure))
        monkeypatch.setattr(test_db, "rollback", rollback)

        with pytest.raises(EvaluationError):
            await store.create(org_a.id, "Unsaved", ACME)
        rollback.assert_awaited_once()
