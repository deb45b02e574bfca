"""Tests for counting and materializing segment membership."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from contact_segments.exceptions import EvaluationError, ValidationError
from contact_segments.services.segments import (
    ConditionValidator,
    MembershipEvaluator,
    MembershipPage,
    PredicateCompiler,
)


def compile_conditions(organization, *conditions):
    group = ConditionValidator().validate(list(conditions))
    return PredicateCompiler().compile(group, organization.id)


@pytest.fixture
def acme_predicate(org_a):
    return compile_conditions(
        org_a, {"id": "c1", "field": "companyName", "operator": "equals", "value": "Acme"}
    )


async def make_acme(make_contacts, organization, n):
    return await make_contacts(
        organization, *[{"company_name": "Acme"} for _ in range(n)]
    )


class TestCount:

    @pytest.mark.asyncio
    async def test_count_matches_only_predicate(self, test_db, org_a, make_contacts, acme_predicate):
        await make_acme(make_contacts, org_a, 3)
        await make_contacts(org_a, {"company_name": "Globex"}, {"company_name": None})

        assert await MembershipEvaluator(test_db).count(acme_predicate) == 3

    @pytest.mark.asyncio
    async def test_count_empty(self, test_db, acme_predicate):
        assert await MembershipEvaluator(test_db).count(acme_predicate) == 0

    @pytest.mark.asyncio
    async def test_count_is_stable(self, test_db, org_a, make_contacts, acme_predicate):
        await make_acme(make_contacts, org_a, 2)
        evaluator = MembershipEvaluator(test_db)

        assert await evaluator.count(acme_predicate) == await evaluator.count(acme_predicate)


class TestMaterialize:

    @pytest.mark.asyncio
    async def test_pages_cover_count(self, test_db, org_a, make_contacts, acme_predicate):
        contacts = await make_acme(make_contacts, org_a, 5)
        await make_contacts(org_a, {"company_name": "Globex"})
        evaluator = MembershipEvaluator(test_db)

        first = await evaluator.materialize(acme_predicate, page=1, page_size=2)
        second = await evaluator.materialize(acme_predicate, page=2, page_size=2)
        third = await evaluator.materialize(acme_predicate, page=3, page_size=2)

        ids = first.contact_ids + second.contact_ids + third.contact_ids
        assert ids == sorted(c.id for c in contacts)
        assert first.total == second.total == third.total == 5
        assert await evaluator.count(acme_predicate) == 5
        assert first.has_more and second.has_more
        assert not third.has_more
        assert len(third.contact_ids) == 1

    @pytest.mark.asyncio
    async def test_page_past_end(self, test_db, org_a, make_contacts, acme_predicate):
        await make_acme(make_contacts, org_a, 2)

        page = await MembershipEvaluator(test_db).materialize(acme_predicate, page=4, page_size=2)

        assert page.contact_ids == []
        assert page.total == 2
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_empty_segment(self, test_db, acme_predicate):
        page = await MembershipEvaluator(test_db).materialize(acme_predicate)

        assert page == MembershipPage(contact_ids=[], page=1, page_size=100, total=0)

    @pytest.mark.asyncio
    async def test_page_size_capped(self, test_db, acme_predicate):
        evaluator = MembershipEvaluator(test_db, max_page_size=10)

        with pytest.raises(ValidationError):
            await evaluator.materialize(acme_predicate, page_size=11)

    @pytest.mark.asyncio
    async def test_page_depth_capped(self, test_db, acme_predicate):
        evaluator = MembershipEvaluator(test_db, max_offset=1000)

        last = await evaluator.materialize(acme_predicate, page=101, page_size=10)
        assert last.contact_ids == []

        with pytest.raises(ValidationError):
            await evaluator.materialize(acme_predicate, page=102, page_size=10)
        with pytest.raises(ValidationError):
            await evaluator.materialize(acme_predicate, page=10**20, page_size=10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,page_size", [(0, 10), (-1, 10), (1, 0)])
    async def test_invalid_page(self, test_db, acme_predicate, page, page_size):
        with pytest.raises(ValidationError):
            await MembershipEvaluator(test_db).materialize(acme_predicate, page=page, page_size=page_size)

    def test_default_page_size_from_settings(self):
        from contact_segments.config import settings

        evaluator = MembershipEvaluator(AsyncMock())
        assert evaluator.default_page_size == settings.SEGMENT_DEFAULT_PAGE_SIZE
        assert evaluator.max_page_size == settings.SEGMENT_MAX_PAGE_SIZE


class TestIterMemberIds:

    @pytest.mark.asyncio
    async def test_iterates_all_in_batches(self, test_db, org_a, make_contacts, acme_predicate):
        contacts = await make_acme(make_contacts, org_a, 7)
        await make_contacts(org_a, {"company_name": "Globex"})
        evaluator = MembershipEvaluator(test_db)

        ids = [contact_id async for contact_id in evaluator.iter_member_ids(acme_predicate, batch_size=3)]

        assert ids == sorted(c.id for c in contacts)

    @pytest.mark.asyncio
    async def test_exact_multiple_of_batch(self, test_db, org_a, make_contacts, acme_predicate):
        contacts = await make_acme(make_contacts, org_a, 4)
        evaluator = MembershipEvaluator(test_db)

        ids = [contact_id async for contact_id in evaluator.iter_member_ids(acme_predicate, batch_size=2)]

        assert ids == sorted(c.id for c in contacts)


class TestStorageFailure:

    @pytest.fixture
    def broken_db(self):
        db = AsyncMock()
        db.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection lost"))
        return db

    @pytest.mark.asyncio
    async def test_count_failure(self, broken_db, acme_predicate):
        with pytest.raises(EvaluationError) as exc_info:
            await MembershipEvaluator(broken_db).count(acme_predicate)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_materialize_failure(self, broken_db, acme_predicate):
        with pytest.raises(EvaluationError):
            await MembershipEvaluator(broken_db).materialize(acme_predicate)

    @pytest.mark.asyncio
    async def test_iteration_failure(self, broken_db, acme_predicate):
        evaluator = MembershipEvaluator(broken_db)
        with pytest.raises(EvaluationError):
            async for _ in evaluator.iter_member_ids(acme_predicate):
                pass
