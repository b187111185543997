"""Tests for base Person and Case records."""

from __future__ import annotations

import pytest

from casegraph.core.errors import ConflictError, NotFoundError, ValidationError
from casegraph.core.types import CaseStatus, PersonStatus, PersonType, utcnow
from casegraph.records.service import RecordService


class TestPersons:
    async def test_display_name_fallbacks(self, records, ctx):
        named = await records.create_person(ctx, first_name="Alex", last_name="Morgan")
        by_email = await records.create_person(ctx, email="tip@example.com")
        by_company = await records.create_person(
            ctx, type=PersonType.EXTERNAL_CONTACT, company="Acme Supplies"
        )
        bare = await records.create_person(ctx)

        assert RecordService.display_name(named) == "Alex Morgan"
        assert RecordService.display_name(by_email) == "tip@example.com"
        assert RecordService.display_name(by_company) == "Acme Supplies"
        assert RecordService.display_name(bare) == "Anonymous"

    async def test_placeholder_is_one_per_tenant(self, records, ctx, other_ctx):
        first = await records.get_or_create_anonymous_placeholder(ctx)
        again = await records.get_or_create_anonymous_placeholder(ctx)
        other = await records.get_or_create_anonymous_placeholder(other_ctx)

        assert first.id == again.id
        assert other.id != first.id
        assert first.type == PersonType.ANONYMOUS_PLACEHOLDER
        assert RecordService.display_name(first) == "Anonymous Placeholder"

    async def test_placeholder_cannot_be_created_directly(self, records, ctx):
        with pytest.raises(ValidationError) as exc_info:
            await records.create_person(ctx, type=PersonType.ANONYMOUS_PLACEHOLDER)
        assert exc_info.value.fields == ["type"]

    async def test_type_and_source_are_write_once(self, records, ctx, make_person):
        person = await make_person("Alex")
        with pytest.raises(ValidationError) as exc_info:
            await records.update_person(ctx, person.id, {"source": "HRIS_SYNC", "type": "EMPLOYEE"})
        assert exc_info.value.fields == ["source", "type"]

        updated = await records.update_person(ctx, person.id, {"email": "alex@example.com"})
        assert updated.email == "alex@example.com"

    async def test_merged_person_names_survivor(self, records, ctx, make_person):
        duplicate, survivor = await make_person("Alex"), await make_person("Alexander")
        with pytest.raises(ValidationError):
            await records.update_person(ctx, duplicate.id, {"status": "MERGED"})

        merged = await records.update_person(
            ctx, duplicate.id,
            {"status": "MERGED", "merged_into_person_id": survivor.id},
        )
        assert merged.status == PersonStatus.MERGED
        assert merged.merged_into_person_id == survivor.id

    async def test_person_outside_tenant_not_found(self, records, other_ctx, make_person):
        person = await make_person("Alex")
        with pytest.raises(NotFoundError):
            await records.require_person(other_ctx, person.id)


class TestCases:
    async def test_reference_numbers_per_tenant(self, records, ctx, other_ctx):
        year = utcnow().year
        first = await records.create_case(ctx)
        second = await records.create_case(ctx)
        elsewhere = await records.create_case(other_ctx)

        assert first.reference_number == f"CASE-{year}-00001"
        assert second.reference_number == f"CASE-{year}-00002"
        assert elsewhere.reference_number == f"CASE-{year}-00001"
        assert first.status == CaseStatus.NEW

    async def test_case_outside_tenant_not_found(self, records, other_ctx, make_case):
        case = await make_case()
        with pytest.raises(NotFoundError):
            await records.require_case(other_ctx, case.id)
        with pytest.raises(NotFoundError):
            await records.require_report(other_ctx, "missing-report")

    async def test_status_change(self, records, ctx, make_case):
        case = await make_case()
        closed = await records.update_case_status(
            ctx, case.id, CaseStatus.CLOSED, rationale="Unfounded", outcome="UNSUBSTANTIATED"
        )
        assert closed.status == CaseStatus.CLOSED
        assert closed.outcome == "UNSUBSTANTIATED"
        assert closed.updated_by == ctx.actor_id

    async def test_list_cases_can_skip_tombstones(self, records, engine, ctx, make_case):
        source, target = await make_case("dup"), await make_case("main")
        await engine.merge(ctx, source.id, target.id, "Duplicate intake")

        assert {c.id for c in await records.list_cases(ctx)} == {source.id, target.id}
        live = await records.list_cases(ctx, include_merged=False)
        assert [c.id for c in live] == [target.id]

    async def test_content_counts(self, records, ctx, make_case, make_person):
        case = await make_case()
        person = await make_person("Sam")
        await records.add_subject(ctx, case.id, "Sam Tester", person_id=person.id)
        await records.add_investigation(ctx, case.id, investigator_id="investigator-1")
        await records.add_message(ctx, case.id, "Any update?")
        await records.add_interaction(ctx, case.id, "Called the reporter")
        await records.add_interaction(ctx, case.id, "Follow-up call")

        counts = await records.count_case_content(ctx, case.id)
        assert (counts.subjects, counts.investigations, counts.messages, counts.interactions) == (
            1, 1, 1, 2,
        )

    async def test_tombstone_rejects_content(self, records, engine, ctx, make_case):
        source, target = await make_case("dup"), await make_case("main")
        await engine.merge(ctx, source.id, target.id, "Duplicate intake")

        with pytest.raises(ConflictError):
            await records.add_message(ctx, source.id, "Late message")
        with pytest.raises(ConflictError):
            await records.update_case_status(ctx, source.id, CaseStatus.OPEN)
