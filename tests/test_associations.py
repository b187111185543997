"""Tests for the labeled association graph."""

from __future__ import annotations

from datetime import timedelta

import pytest

from casegraph.associations.models import (
    AssociationKind,
    CaseCaseLabel,
    EvidentiaryStatus,
    PersonCaseLabel,
    PersonPersonLabel,
    PersonPersonSource,
    ReportAssociationType,
)
from casegraph.core.errors import ConflictError, NotFoundError, ValidationError
from casegraph.core.types import utcnow


@pytest.fixture
async def people(make_person):
    return {
        "subject": await make_person("Sam", "Subject"),
        "witness": await make_person("Wendy", "Witness"),
        "lead": await make_person("Ian", "Investigator"),
    }


class TestPersonCase:
    async def test_create_evidentiary_defaults_to_active(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["subject"].id, case.id, "SUBJECT"
        )
        assert assoc.kind == AssociationKind.PERSON_CASE
        assert assoc.label == PersonCaseLabel.SUBJECT
        assert assoc.evidentiary_status == EvidentiaryStatus.ACTIVE
        assert assoc.started_at is None
        assert assoc.is_active

    async def test_create_role_sets_start(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, AssociationKind.PERSON_CASE, people["lead"].id, case.id,
            PersonCaseLabel.ASSIGNED_INVESTIGATOR,
        )
        assert assoc.started_at is not None
        assert assoc.evidentiary_status is None
        assert assoc.ended_at is None

    async def test_duplicate_is_conflict(self, associations, ctx, people, make_case):
        case = await make_case()
        await associations.create(ctx, "person-case", people["subject"].id, case.id, "SUBJECT")
        with pytest.raises(ConflictError):
            await associations.create(
                ctx, "person-case", people["subject"].id, case.id, "SUBJECT"
            )

    async def test_same_pair_different_label_is_allowed(self, associations, ctx, people, make_case):
        case = await make_case()
        await associations.create(ctx, "person-case", people["subject"].id, case.id, "SUBJECT")
        witness = await associations.create(
            ctx, "person-case", people["subject"].id, case.id, "WITNESS"
        )
        assert witness.label == PersonCaseLabel.WITNESS

    async def test_removal_frees_uniqueness(self, associations, ctx, people, make_case):
        case = await make_case()
        first = await associations.create(
            ctx, "person-case", people["witness"].id, case.id, "WITNESS"
        )
        removed = await associations.remove(ctx, "person-case", first.id)
        assert removed.removed_at is not None
        assert removed.removed_by == ctx.actor_id

        again = await associations.create(
            ctx, "person-case", people["witness"].id, case.id, "WITNESS"
        )
        assert again.id != first.id
        listed = await associations.list_for_case(ctx, case.id)
        assert [a.id for a in listed.persons] == [again.id]

    async def test_removed_association_is_not_found(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["witness"].id, case.id, "WITNESS"
        )
        await associations.remove(ctx, "person-case", assoc.id)
        with pytest.raises(NotFoundError):
            await associations.get(ctx, "person-case", assoc.id)

    async def test_unknown_label_rejected(self, associations, ctx, people, make_case):
        case = await make_case()
        with pytest.raises(ValidationError) as exc_info:
            await associations.create(
                ctx, "person-case", people["subject"].id, case.id, "MANAGER_OF"
            )
        assert exc_info.value.fields == ["label"]

    async def test_role_field_on_evidentiary_rejected(self, associations, ctx, people, make_case):
        case = await make_case()
        with pytest.raises(ValidationError) as exc_info:
            await associations.create(
                ctx, "person-case", people["subject"].id, case.id, "SUBJECT",
                {"started_at": utcnow()},
            )
        assert exc_info.value.fields == ["started_at"]

    async def test_evidentiary_field_on_role_rejected(self, associations, ctx, people, make_case):
        case = await make_case()
        with pytest.raises(ValidationError) as exc_info:
            await associations.create(
                ctx, "person-case", people["lead"].id, case.id, "REVIEWER",
                {"evidentiary_status": "CLEARED"},
            )
        assert exc_info.value.fields == ["evidentiary_status"]

    async def test_unknown_metadata_field_rejected(self, associations, ctx, people, make_case):
        case = await make_case()
        with pytest.raises(ValidationError):
            await associations.create(
                ctx, "person-case", people["subject"].id, case.id, "SUBJECT",
                {"colour": "blue"},
            )

    async def test_missing_endpoint_is_not_found(self, associations, ctx, people):
        with pytest.raises(NotFoundError):
            await associations.create(
                ctx, "person-case", people["subject"].id, "no-such-case", "SUBJECT"
            )

    async def test_other_tenant_cannot_see_endpoints(
        self, associations, ctx, other_ctx, people, make_case
    ):
        case = await make_case()
        with pytest.raises(NotFoundError):
            await associations.create(
                other_ctx, "person-case", people["subject"].id, case.id, "SUBJECT"
            )


class TestEvidentiaryStatus:
    async def test_status_change_keeps_row(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["subject"].id, case.id, "SUBJECT"
        )
        cleared = await associations.update_status(
            ctx, "person-case", assoc.id, "CLEARED", reason="No evidence"
        )
        assert cleared.id == assoc.id
        assert cleared.evidentiary_status == EvidentiaryStatus.CLEARED
        assert cleared.status_reason == "No evidence"
        assert cleared.status_changed_by == ctx.actor_id
        # A cleared subject is still a fact on the case
        assert cleared.is_active

    async def test_withdrawn_is_inactive(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["witness"].id, case.id, "WITNESS"
        )
        withdrawn = await associations.update_status(ctx, "person-case", assoc.id, "WITHDRAWN")
        assert not withdrawn.is_active
        active = await associations.find_by_label(
            ctx, "person-case", "WITNESS", active_only=True
        )
        assert active == []

    async def test_status_change_on_role_rejected(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["lead"].id, case.id, "ASSIGNED_INVESTIGATOR"
        )
        with pytest.raises(ValidationError):
            await associations.update_status(ctx, "person-case", assoc.id, "CLEARED")

    async def test_unknown_status_rejected(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["subject"].id, case.id, "SUBJECT"
        )
        with pytest.raises(ValidationError) as exc_info:
            await associations.update_status(ctx, "person-case", assoc.id, "GUILTY")
        assert exc_info.value.fields == ["status"]

    async def test_case_case_has_no_status(self, associations, ctx, make_case):
        a, b = await make_case("A"), await make_case("B")
        assoc = await associations.create(ctx, "case-case", a.id, b.id, "RELATED")
        with pytest.raises(ValidationError):
            await associations.update_status(ctx, "case-case", assoc.id, "CLEARED")


class TestRoleEnd:
    async def test_end_role(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["lead"].id, case.id, "ASSIGNED_INVESTIGATOR"
        )
        ended = await associations.end_role(ctx, assoc.id, reason="Reassigned")
        assert ended.ended_at is not None
        assert ended.ended_reason == "Reassigned"
        assert ended.ended_by == ctx.actor_id
        assert not ended.is_active

        history = await associations.get_person_case_history(
            ctx, people["lead"].id, "ASSIGNED_INVESTIGATOR"
        )
        assert [h.id for h in history] == [assoc.id]

    async def test_end_requires_reason(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["lead"].id, case.id, "APPROVER"
        )
        with pytest.raises(ValidationError) as exc_info:
            await associations.end_role(ctx, assoc.id, reason="  ")
        assert exc_info.value.fields == ["reason"]

    async def test_end_twice_is_conflict(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["lead"].id, case.id, "REVIEWER"
        )
        await associations.end_role(ctx, assoc.id, reason="Done")
        with pytest.raises(ConflictError):
            await associations.end_role(ctx, assoc.id, reason="Done again")

    async def test_end_before_start_rejected(self, associations, ctx, people, make_case):
        case = await make_case()
        started = utcnow()
        assoc = await associations.create(
            ctx, "person-case", people["lead"].id, case.id, "STAKEHOLDER",
            {"started_at": started},
        )
        with pytest.raises(ValidationError):
            await associations.end_role(
                ctx, assoc.id, reason="Typo", ended_at=started - timedelta(days=1)
            )

    async def test_evidentiary_cannot_be_ended(self, associations, ctx, people, make_case):
        case = await make_case()
        assoc = await associations.create(
            ctx, "person-case", people["subject"].id, case.id, "SUBJECT"
        )
        with pytest.raises(ValidationError):
            await associations.end_role(ctx, assoc.id, reason="Cleared")


class TestTombstones:
    async def test_merged_case_rejects_new_associations(
        self, associations, engine, ctx, people, make_case
    ):
        source, target = await make_case("dup"), await make_case("main")
        await engine.merge(ctx, source.id, target.id, "Duplicate intake")

        with pytest.raises(ConflictError):
            await associations.create(
                ctx, "person-case", people["subject"].id, source.id, "SUBJECT"
            )
        with pytest.raises(ConflictError):
            await associations.create(ctx, "case-case", target.id, source.id, "RELATED")

    async def test_merge_labels_reserved(self, associations, ctx, make_case):
        a, b = await make_case("A"), await make_case("B")
        with pytest.raises(ValidationError):
            await associations.create(ctx, "case-case", a.id, b.id, CaseCaseLabel.MERGED_FROM)


class TestCaseCase:
    async def test_self_association_rejected(self, associations, ctx, make_case):
        case = await make_case()
        with pytest.raises(ValidationError):
            await associations.create(ctx, "case-case", case.id, case.id, "RELATED")

    async def test_hierarchy_writes_both_ends(self, associations, ctx, make_case):
        parent, child = await make_case("parent"), await make_case("child")
        down, up = await associations.create_case_hierarchy(ctx, parent.id, child.id)
        assert (down.source_case_id, down.target_case_id, down.label) == (
            parent.id, child.id, CaseCaseLabel.PARENT,
        )
        assert (up.source_case_id, up.target_case_id, up.label) == (
            child.id, parent.id, CaseCaseLabel.CHILD,
        )
        listed = await associations.list_for_case(ctx, parent.id)
        assert len(listed.cases) == 2

    async def test_split_pair(self, associations, ctx, make_case):
        original, new = await make_case("original"), await make_case("new")
        forward, back = await associations.create_case_split(ctx, original.id, new.id)
        assert forward.label == CaseCaseLabel.SPLIT_TO
        assert back.label == CaseCaseLabel.SPLIT_FROM

    async def test_duplicate_pair_rolls_back_both(self, associations, ctx, make_case):
        parent, child = await make_case("parent"), await make_case("child")
        await associations.create(ctx, "case-case", child.id, parent.id, "CHILD")
        with pytest.raises(ConflictError):
            await associations.create_case_hierarchy(ctx, parent.id, child.id)
        listed = await associations.list_for_case(ctx, parent.id)
        assert [c.label for c in listed.cases] == [CaseCaseLabel.CHILD]


class TestPersonPerson:
    async def test_symmetric_pair_is_canonical(self, associations, ctx, people):
        a, b = people["subject"].id, people["witness"].id
        first = await associations.create(ctx, "person-person", b, a, "SPOUSE")
        assert (first.person_a_id, first.person_b_id) == tuple(sorted((a, b)))
        assert not first.is_directional
        with pytest.raises(ConflictError):
            await associations.create(ctx, "person-person", a, b, "SPOUSE")

    async def test_manager_relationship_is_directional(self, associations, ctx, people):
        manager, report = people["lead"].id, people["subject"].id
        assoc = await associations.create_manager_relationship(ctx, manager, report)
        assert assoc.person_a_id == manager
        assert assoc.person_b_id == report
        assert assoc.is_directional
        assert assoc.a_to_b == "manages"
        assert assoc.b_to_a == "reports to"
        assert assoc.source == PersonPersonSource.HRIS

        found = await associations.find_relationship(ctx, report, manager)
        assert [f.id for f in found] == [assoc.id]

    async def test_self_relationship_rejected(self, associations, ctx, people):
        pid = people["subject"].id
        with pytest.raises(ValidationError):
            await associations.create(ctx, "person-person", pid, pid, "FAMILY_MEMBER")

    async def test_coi_excludes_expired_and_non_coi(self, associations, ctx, people, make_person):
        subject = people["subject"].id
        friend = await make_person("Fran", "Friend")
        former = await make_person("Fred", "Former")
        now = utcnow()

        await associations.create(
            ctx, "person-person", subject, friend.id, "CLOSE_PERSONAL_FRIEND",
            {"source": "INVESTIGATION"},
        )
        await associations.create(
            ctx, "person-person", subject, former.id, "BUSINESS_PARTNER",
            {"effective_from": now - timedelta(days=400), "effective_until": now - timedelta(days=30)},
        )
        await associations.create(ctx, "person-person", subject, people["lead"].id, "FORMER_COLLEAGUE")

        coi = await associations.find_coi_relationships(ctx, subject)
        assert [c.label for c in coi] == [PersonPersonLabel.CLOSE_PERSONAL_FRIEND]

    async def test_effective_window_must_be_ordered(self, associations, ctx, people):
        now = utcnow()
        with pytest.raises(ValidationError) as exc_info:
            await associations.create(
                ctx, "person-person", people["subject"].id, people["witness"].id, "SPOUSE",
                {"effective_from": now, "effective_until": now - timedelta(days=1)},
            )
        assert exc_info.value.fields == ["effective_until"]


class TestReportLinks:
    async def test_link_and_list(self, associations, reports, ctx, people, make_case):
        case = await make_case()
        report = await reports.create(ctx, {
            "type": "WEB_FORM", "source_channel": "WEB_FORM", "details": "Invoices split",
            "reporter_type": "IDENTIFIED", "reporter_person_id": people["witness"].id,
        })
        link = await associations.link_report_to_case(ctx, report.id, case.id)
        assert link.association_type == ReportAssociationType.PRIMARY

        listed = await associations.list_for_case(ctx, case.id)
        assert [r.report_id for r in listed.reports] == [report.id]

        with pytest.raises(ConflictError):
            await associations.link_report_to_case(ctx, report.id, case.id, "RELATED")

    async def test_removed_link_can_be_relinked(self, associations, reports, ctx, make_case):
        case = await make_case()
        report = await reports.create(ctx, {
            "type": "WEB_FORM", "source_channel": "WEB_FORM", "details": "Invoices split",
        })
        link = await associations.link_report_to_case(ctx, report.id, case.id)
        removed = await associations.remove_report_link(ctx, link.id)
        assert removed.removed_by == ctx.actor_id
        assert (await associations.list_for_case(ctx, case.id)).reports == []

        with pytest.raises(NotFoundError):
            await associations.remove_report_link(ctx, link.id)

        relinked = await associations.link_report_to_case(ctx, report.id, case.id, "RELATED")
        assert relinked.id != link.id
        assert relinked.association_type == ReportAssociationType.RELATED

    async def test_merged_from_link_reserved(self, associations, reports, ctx, make_case):
        case = await make_case()
        report = await reports.create(ctx, {
            "type": "WEB_FORM", "source_channel": "WEB_FORM", "details": "Invoices split",
        })
        with pytest.raises(ValidationError):
            await associations.link_report_to_case(ctx, report.id, case.id, "MERGED_FROM")

    async def test_person_listing_covers_all_kinds(
        self, associations, reports, ctx, people, make_case
    ):
        case = await make_case()
        pid = people["witness"].id
        report = await reports.create(ctx, {
            "type": "WEB_FORM", "source_channel": "WEB_FORM", "details": "Invoices split",
            "reporter_type": "IDENTIFIED", "reporter_person_id": pid,
        })
        await associations.create(ctx, "person-case", pid, case.id, "WITNESS")
        await associations.create(ctx, "person-person", pid, people["subject"].id, "SPOUSE")

        listed = await associations.list_for_person(ctx, pid)
        assert [a.case_id for a in listed.cases] == [case.id]
        assert [a.report_id for a in listed.reports] == [report.id]
        assert len(listed.persons) == 1


async def test_mutations_are_audited(associations, audit, ctx, people, make_case):
    case = await make_case()
    assoc = await associations.create(
        ctx, "person-case", people["subject"].id, case.id, "SUBJECT"
    )
    await associations.update_status(ctx, "person-case", assoc.id, "SUBSTANTIATED")

    events = await audit.query(ctx.tenant_id, {"entity_id": case.id})
    actions = [e.action for e in events]
    assert "association_created" in actions
    assert "association_status_changed" in actions
    assert await audit.verify_chain(ctx.tenant_id)


async def test_mutations_publish_events(associations, queue, ctx, people, make_case):
    case = await make_case()
    await queue.drain()
    seen = []

    async def capture(event):
        seen.append(event.name)

    queue.subscribe(capture)
    await associations.create(ctx, "person-case", people["subject"].id, case.id, "SUBJECT")
    await queue.drain()
    assert seen == ["association.person_case.created"]
