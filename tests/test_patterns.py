"""Tests for the pattern projection and the queries answered from it."""

from __future__ import annotations

import pytest

from casegraph.core.errors import ValidationError
from casegraph.core.types import CaseStatus
from casegraph.search.documents import DocType
from casegraph.search.query import PersonCriterion


@pytest.fixture
async def graph(associations, queue, projector, ctx, make_person, make_case):
    """Three cases sharing two people in different roles, projected."""
    alice = await make_person("Alice", "Adams")
    bob = await make_person("Bob", "Brown")
    case1 = await make_case("Overtime fraud")
    case2 = await make_case("Timesheet padding")
    case3 = await make_case("Overtime fraud, second report")

    await associations.create(ctx, "person-case", alice.id, case1.id, "SUBJECT")
    await associations.create(ctx, "person-case", bob.id, case1.id, "WITNESS")
    await associations.create(ctx, "person-case", alice.id, case2.id, "WITNESS")
    await associations.create(ctx, "person-case", bob.id, case2.id, "SUBJECT")
    await associations.create(ctx, "person-case", alice.id, case3.id, "SUBJECT")
    await associations.create(ctx, "case-case", case1.id, case2.id, "RELATED")
    await queue.drain()

    return {"alice": alice, "bob": bob, "case1": case1, "case2": case2, "case3": case3}


class TestProjection:
    async def test_case_document_shape(self, projection_store, ctx, graph):
        doc = await projection_store.get(ctx.tenant_id, DocType.CASE, graph["case1"].id)
        assert doc["reference_number"] == graph["case1"].reference_number
        assert doc["subject_person_ids"] == [graph["alice"].id]
        assert doc["witness_person_ids"] == [graph["bob"].id]
        persons = {(p["person_name"], p["label"]) for p in doc["associations"]["persons"]}
        assert persons == {("Alice Adams", "SUBJECT"), ("Bob Brown", "WITNESS")}
        assert doc["associations"]["linked_cases"][0]["case_id"] == graph["case2"].id

    async def test_person_rename_reprojects_names(
        self, records, queue, projection_store, ctx, graph
    ):
        await records.update_person(ctx, graph["bob"].id, {"last_name": "Black"})
        await queue.drain()
        for case in (graph["case1"], graph["case2"]):
            doc = await projection_store.get(ctx.tenant_id, DocType.CASE, case.id)
            names = {p["person_name"] for p in doc["associations"]["persons"]}
            assert "Bob Black" in names
            assert "Bob Brown" not in names

    async def test_projection_trails_writes_until_drained(
        self, associations, queue, patterns, ctx, graph, make_person
    ):
        carol = await make_person("Carol", "Clark")
        await associations.create(ctx, "person-case", carol.id, graph["case1"].id, "WITNESS")
        assert await patterns.find_cases_involving_person(ctx, carol.id) == []

        await queue.drain()
        matches = await patterns.find_cases_involving_person(ctx, carol.id)
        assert [m.case_id for m in matches] == [graph["case1"].id]

    async def test_report_document(
        self, reports, queue, projector, projection_store, ctx, make_person
    ):
        reporter = await make_person("Rita", "Reporter")
        report = await reports.create(ctx, {
            "type": "WEB_FORM", "source_channel": "WEB_FORM", "details": "Overtime fraud",
            "reporter_type": "IDENTIFIED", "reporter_person_id": reporter.id,
        })
        await queue.drain()
        doc = await projection_store.get(ctx.tenant_id, DocType.REPORT, report.id)
        assert doc["reporter_person_ids"] == [reporter.id]
        assert doc["status"] == "RECEIVED"

    async def test_rebuild_matches_incremental(
        self, projector, projection_store, patterns, ctx, graph
    ):
        before = await patterns.get_person_involvement_summary(ctx, graph["alice"].id)
        await projection_store.clear_tenant(ctx.tenant_id)
        assert await projection_store.count_docs(ctx.tenant_id, DocType.CASE) == 0

        counts = await projector.rebuild_tenant(ctx.tenant_id)
        assert counts == {"cases": 3, "reports": 0}
        after = await patterns.get_person_involvement_summary(ctx, graph["alice"].id)
        assert after == before

    async def test_removed_association_leaves_projection(
        self, associations, queue, patterns, ctx, graph
    ):
        listed = await associations.list_for_case(ctx, graph["case3"].id)
        await associations.remove(ctx, "person-case", listed.persons[0].id)
        await queue.drain()
        matches = await patterns.find_cases_involving_person(ctx, graph["alice"].id)
        assert graph["case3"].id not in {m.case_id for m in matches}


class TestPersonQueries:
    async def test_cases_involving_person(self, patterns, ctx, graph):
        matches = await patterns.find_cases_involving_person(ctx, graph["alice"].id)
        assert {m.case_id for m in matches} == {
            graph["case1"].id, graph["case2"].id, graph["case3"].id,
        }
        by_case = {m.case_id: m for m in matches}
        assert by_case[graph["case2"].id].roles == ["WITNESS"]
        assert by_case[graph["case1"].id].role_breakdown == [
            {"label": "SUBJECT", "evidentiary_status": "ACTIVE", "is_active": True}
        ]

    async def test_role_filter(self, patterns, ctx, graph):
        matches = await patterns.find_cases_involving_person(
            ctx, graph["alice"].id, roles=["subject"]
        )
        assert {m.case_id for m in matches} == {graph["case1"].id, graph["case3"].id}

    async def test_pagination(self, patterns, ctx, graph):
        first = await patterns.find_cases_involving_person(ctx, graph["alice"].id, limit=2)
        rest = await patterns.find_cases_involving_person(
            ctx, graph["alice"].id, limit=2, offset=2
        )
        assert len(first) == 2
        assert len(rest) == 1
        assert not {m.case_id for m in first} & {m.case_id for m in rest}

    async def test_unknown_role_rejected(self, patterns, ctx, graph):
        with pytest.raises(ValidationError) as exc_info:
            await patterns.find_cases_involving_person(ctx, graph["alice"].id, roles=["VILLAIN"])
        assert exc_info.value.fields == ["roles"]

    async def test_involvement_summary(self, associations, queue, patterns, ctx, graph):
        summary = await patterns.get_person_involvement_summary(ctx, graph["alice"].id)
        assert summary.total_cases == 3
        assert summary.active_involvements == 3
        assert summary.by_role == {"SUBJECT": 2, "WITNESS": 1}
        assert summary.by_status == {"ACTIVE": 3}

        listed = await associations.list_for_case(ctx, graph["case2"].id)
        witness = next(a for a in listed.persons if a.person_id == graph["alice"].id)
        await associations.update_status(ctx, "person-case", witness.id, "WITHDRAWN")
        await queue.drain()

        summary = await patterns.get_person_involvement_summary(ctx, graph["alice"].id)
        assert summary.active_involvements == 2
        assert summary.by_status == {"ACTIVE": 2, "WITHDRAWN": 1}

    async def test_other_tenant_sees_nothing(self, patterns, other_ctx, graph):
        assert await patterns.find_cases_involving_person(other_ctx, graph["alice"].id) == []
        summary = await patterns.get_person_involvement_summary(other_ctx, graph["alice"].id)
        assert summary.total_cases == 0


class TestCombination:
    async def test_criteria_must_meet_on_one_case(self, patterns, ctx, graph):
        matches = await patterns.find_cases_with_person_combination(ctx, [
            {"person_id": graph["alice"].id, "roles": ["SUBJECT"]},
            {"person_id": graph["bob"].id, "roles": ["WITNESS"]},
        ])
        assert [m.case_id for m in matches] == [graph["case1"].id]

    async def test_roles_split_across_cases_do_not_match(self, patterns, ctx, graph):
        # Alice is a subject on case1 and case3, Bob only on case2
        matches = await patterns.find_cases_with_person_combination(ctx, [
            PersonCriterion(person_id=graph["alice"].id, roles=["SUBJECT"]),
            PersonCriterion(person_id=graph["bob"].id, roles=["SUBJECT"]),
        ])
        assert matches == []

    async def test_label_and_status_match_within_one_entry(
        self, associations, queue, patterns, ctx, graph
    ):
        listed = await associations.list_for_case(ctx, graph["case1"].id)
        alice_subject = next(a for a in listed.persons if a.person_id == graph["alice"].id)
        await associations.update_status(ctx, "person-case", alice_subject.id, "CLEARED")
        await queue.drain()

        cleared = await patterns.find_cases_with_person_combination(ctx, [
            {"person_id": graph["alice"].id, "roles": ["SUBJECT"], "statuses": ["CLEARED"]},
        ])
        assert [m.case_id for m in cleared] == [graph["case1"].id]

        # Alice is ACTIVE on case2, but as a witness, not a subject
        active_subject = await patterns.find_cases_with_person_combination(ctx, [
            {"person_id": graph["alice"].id, "roles": ["SUBJECT"], "statuses": ["ACTIVE"]},
        ])
        assert [m.case_id for m in active_subject] == [graph["case3"].id]

    async def test_empty_criteria_rejected(self, patterns, ctx):
        with pytest.raises(ValidationError):
            await patterns.find_cases_with_person_combination(ctx, [])


class TestRepeatAndRelated:
    async def test_repeat_subjects(self, patterns, ctx, graph):
        repeats = await patterns.find_repeat_involvements(ctx, "SUBJECT", min_count=2)
        assert [(r.person_id, r.case_count) for r in repeats] == [(graph["alice"].id, 2)]

        everyone = await patterns.find_repeat_involvements(ctx, "SUBJECT", min_count=1)
        assert {r.person_id for r in everyone} == {graph["alice"].id, graph["bob"].id}

    async def test_min_count_validated(self, patterns, ctx):
        with pytest.raises(ValidationError):
            await patterns.find_repeat_involvements(ctx, "SUBJECT", min_count=0)

    async def test_related_cases_both_directions(self, patterns, ctx, graph):
        outgoing = await patterns.get_related_cases(ctx, graph["case1"].id)
        assert [(r.case_id, r.label, r.direction) for r in outgoing] == [
            (graph["case2"].id, "RELATED", "outgoing")
        ]
        incoming = await patterns.get_related_cases(ctx, graph["case2"].id)
        assert [(r.case_id, r.direction) for r in incoming] == [(graph["case1"].id, "incoming")]
        assert incoming[0].reference_number == graph["case1"].reference_number

    async def test_unknown_case_has_no_related(self, patterns, ctx):
        assert await patterns.get_related_cases(ctx, "missing") == []


class TestTombstones:
    async def test_merged_case_drops_out_of_queries(
        self, engine, queue, patterns, projection_store, ctx, graph
    ):
        await engine.merge(ctx, graph["case3"].id, graph["case1"].id, "Same allegation")
        await queue.drain()

        matches = await patterns.find_cases_involving_person(ctx, graph["alice"].id)
        assert graph["case3"].id not in {m.case_id for m in matches}
        repeats = await patterns.find_repeat_involvements(ctx, "SUBJECT", min_count=2)
        assert repeats == []

        tombstone = await projection_store.get(ctx.tenant_id, DocType.CASE, graph["case3"].id)
        assert tombstone["is_merged"] is True
        assert tombstone["merged_into_case_id"] == graph["case1"].id

    async def test_merge_moves_people_onto_target_document(
        self, engine, associations, queue, patterns, ctx, graph, make_person
    ):
        dave = await make_person("Dave", "Dunn")
        await associations.create(ctx, "person-case", dave.id, graph["case3"].id, "WITNESS")
        await engine.merge(ctx, graph["case3"].id, graph["case1"].id, "Same allegation")
        await queue.drain()

        matches = await patterns.find_cases_involving_person(ctx, dave.id)
        assert [m.case_id for m in matches] == [graph["case1"].id]

    async def test_duplicate_report_merge_end_to_end(
        self, engine, records, associations, queue, projector, patterns, ctx,
        make_person, make_case,
    ):
        p1, p2 = await make_person("Pat", "One"), await make_person("Pam", "Two")
        c1, c2 = await make_case("Expense claim"), await make_case("Expense claim, again")
        await associations.create(ctx, "person-case", p1.id, c1.id, "SUBJECT")
        await associations.create(ctx, "person-case", p1.id, c2.id, "REPORTER")
        await associations.create(ctx, "person-case", p2.id, c2.id, "SUBJECT")

        await engine.merge(ctx, c1.id, c2.id, "duplicate report")

        tombstone = await records.get_case(ctx, c1.id)
        assert tombstone.is_merged
        assert tombstone.status == CaseStatus.CLOSED
        assert tombstone.merged_into_case_id == c2.id
        assert tombstone.merged_reason == "duplicate report"
        assert tombstone.merged_by == ctx.actor_id
        assert tombstone.merged_at is not None

        on_c2 = await associations.list_for_case(ctx, c2.id)
        assert {(a.label.value, a.person_id) for a in on_c2.persons} == {
            ("SUBJECT", p1.id), ("REPORTER", p1.id), ("SUBJECT", p2.id),
        }
        assert (await associations.list_for_case(ctx, c1.id)).persons == []

        await queue.drain()
        history = await patterns.get_reporter_history(ctx, p1.id)
        assert history.count == 1
        assert history.case_ids == [c2.id]
        assert history.report_ids == []
        matches = await patterns.find_cases_involving_person(ctx, p1.id, ["SUBJECT"])
        assert [m.case_id for m in matches] == [c2.id]


class TestReporterHistory:
    async def _report(self, reports, ctx, person_id):
        return await reports.create(ctx, {
            "type": "WEB_FORM", "source_channel": "WEB_FORM", "details": "Concern raised",
            "reporter_type": "IDENTIFIED", "reporter_person_id": person_id,
        })

    async def test_first_time_reporter(self, reports, queue, patterns, ctx, make_person):
        rita = await make_person("Rita", "Reporter")
        current = await self._report(reports, ctx, rita.id)
        await queue.drain()

        history = await patterns.get_reporter_history(ctx, rita.id, excluding_report_id=current.id)
        assert history.count == 0
        assert not history.show_badge
        assert history.label == "0 previous reports"

    async def test_previous_reports_counted(self, reports, queue, patterns, ctx, make_person):
        rita = await make_person("Rita", "Reporter")
        earlier = await self._report(reports, ctx, rita.id)
        current = await self._report(reports, ctx, rita.id)
        await queue.drain()

        history = await patterns.get_reporter_history(ctx, rita.id, excluding_report_id=current.id)
        assert history.count == 1
        assert history.show_badge
        assert history.label == "1 previous report"
        assert history.report_ids == [earlier.id]

    async def test_case_reporter_not_double_counted(
        self, reports, associations, queue, patterns, ctx, make_person, make_case
    ):
        rita = await make_person("Rita", "Reporter")
        earlier = await self._report(reports, ctx, rita.id)
        linked_case = await make_case("Linked")
        await associations.link_report_to_case(ctx, earlier.id, linked_case.id)
        await associations.create(ctx, "person-case", rita.id, linked_case.id, "REPORTER")

        walk_in = await make_case("Walk-in complaint")
        await associations.create(ctx, "person-case", rita.id, walk_in.id, "REPORTER")
        await queue.drain()

        history = await patterns.get_reporter_history(ctx, rita.id)
        assert history.count == 2
        assert history.label == "2 previous reports"
        assert history.report_ids == [earlier.id]
        assert history.case_ids == [walk_in.id]
