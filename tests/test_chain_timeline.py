"""
Chain timeline reconstruction tests.

Tests cover:
  - Round trip distribution → delegation → mark back → approval → submission
  - Timeline from any assignment on the chain
  - Predecessor resolver order (same data, template-wide, root, chronological)
  - Cycle guard on corrupted parent pointers
  - Movement-history fallback by submission id
"""

from datetime import datetime, timedelta, timezone

import pytest

from refportal.models import db
from refportal.models.workflow import FormAssignment, Submission
from refportal.services import form_template_service
from refportal.services import form_workflow_service as workflow
from refportal.services.chain_timeline import (
    ChainContext,
    build_timeline,
    fallback_predecessor,
    resolve_chronological_predecessor,
    resolve_root_predecessor,
    resolve_same_data_predecessor,
    resolve_template_predecessor,
)


T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _row(id, assigned_by, assigned_to, *, minutes, parent=None, data_id=None, **kwargs):
    """Transient assignment for pure reconstruction tests."""
    return FormAssignment(
        id=id,
        template_id=1,
        assigned_by=assigned_by,
        assigned_to=assigned_to,
        parent_assignment_id=parent,
        data_id=data_id,
        status=kwargs.pop("status", "Edited"),
        last_action=kwargs.pop("last_action", "Assigned"),
        delegation_chain=kwargs.pop("delegation_chain", []),
        created_at=T0 + timedelta(minutes=minutes),
        updated_at=T0 + timedelta(minutes=minutes),
        **kwargs,
    )


@pytest.fixture()
def round_trip(template, distributor, director, scientist):
    """D distributes to A, A delegates to B, B drafts and marks back to A."""
    result = form_template_service.distribute(template.id, distributor, user_ids=[director.id])
    root = db.session.get(FormAssignment, result["created"][0])
    child = workflow.delegate(director, template.id, scientist.id, remarks="Fill it in")
    submission, _ = workflow.save_draft(scientist, template.id, {"f1": "ok"}, assignment_id=child.id)
    returned = workflow.mark_back(scientist, child.id, remarks="Ready for approval")
    return {"root": root, "child": child, "returned": returned, "submission": submission}


# ═════════════════════════════════════════════════════════════════════════
# END-TO-END CHAINS
# ═════════════════════════════════════════════════════════════════════════


class TestRoundTrip:
    def test_autostarted_chain_from_delegate(self, distributor, director, scientist, make_template):
        shared = make_template(distributor, shared_with_labs=["Physics Lab"])
        child = workflow.delegate(director, shared.id, scientist.id, remarks="Take this one")

        timeline = workflow.get_chain_details(child.id)
        assert [e["type"] for e in timeline] == ["Initiated", "Delegated"]
        assert [e["id"] for e in timeline] == [child.parent_assignment_id, child.id]
        assert timeline[0]["from_user"]["id"] == distributor.id
        assert timeline[1]["from_user"]["id"] == director.id
        assert [e["is_current"] for e in timeline] == [False, True]

    def test_two_delegations_after_autostart(self, distributor, director, scientist, assistant, make_template):
        shared = make_template(distributor, shared_with_labs=["Physics Lab"])
        first = workflow.delegate(director, shared.id, scientist.id)
        second = workflow.delegate(scientist, shared.id, assistant.id)

        timeline = workflow.get_chain_details(first.id)
        assert [e["type"] for e in timeline] == ["Initiated", "Delegated", "Delegated"]
        assert [e["id"] for e in timeline][1:] == [first.id, second.id]
        assert [e["is_current"] for e in timeline] == [False, True, False]

    def test_timeline_from_returned_assignment(self, round_trip, distributor, director, scientist):
        timeline = workflow.get_chain_details(round_trip["returned"].id)

        assert [e["type"] for e in timeline] == ["Initiated", "Delegated", "Returned"]
        assert [e["id"] for e in timeline] == [
            round_trip["root"].id, round_trip["child"].id, round_trip["returned"].id,
        ]
        assert timeline[0]["from_user"]["id"] == distributor.id
        assert timeline[0]["to_user"]["id"] == director.id
        assert timeline[1]["remarks"] == "Fill it in"
        assert timeline[2]["from_user"]["id"] == scientist.id
        assert [e["is_current"] for e in timeline] == [False, False, True]

    def test_timeline_from_middle_assignment(self, round_trip):
        timeline = workflow.get_chain_details(round_trip["child"].id)
        assert [e["id"] for e in timeline] == [
            round_trip["root"].id, round_trip["child"].id, round_trip["returned"].id,
        ]
        assert [e["is_current"] for e in timeline] == [False, True, False]

    def test_approval_authority_flag(self, round_trip):
        timeline = workflow.get_chain_details(round_trip["returned"].id)
        assert timeline[0]["to_user"]["has_approval_authority"] is True
        assert timeline[1]["to_user"]["has_approval_authority"] is False

    def test_submitted_chain_gets_closing_entry(self, round_trip, director, distributor):
        returned = round_trip["returned"]
        workflow.approve(director, returned.id)
        workflow.submit_to_distributor(director, returned.id, remarks="Final copy")

        timeline = workflow.get_chain_details(returned.id)
        closing = timeline[-1]
        assert len(timeline) == 4
        assert closing["id"] == f"{returned.id}_submitted"
        assert closing["type"] == "Returned"
        assert closing["action"] == "Submitted"
        assert closing["from_user"]["id"] == director.id
        assert closing["to_user"]["id"] == distributor.id
        assert closing["is_current"] is True

    def test_chain_by_submission(self, round_trip):
        timeline, source = workflow.get_chain_by_submission_id(round_trip["submission"].id)
        assert source == "assignment_chain"
        assert [e["id"] for e in timeline] == [
            round_trip["root"].id, round_trip["child"].id, round_trip["returned"].id,
        ]
        assert timeline[-1]["is_current"] is True

    def test_return_to_earlier_participant(self, round_trip, director, scientist, assistant, template):
        returned = round_trip["returned"]
        redo = workflow.delegate(director, template.id, assistant.id, remarks="Second pass")
        back = workflow.mark_back(assistant, redo.id, return_to_id=director.id)

        timeline = workflow.get_chain_details(back.id)
        assert timeline[-1]["id"] == back.id
        assert timeline[-1]["type"] == "Returned"
        assert timeline[-2]["id"] == redo.id
        assert redo.parent_assignment_id == returned.id

    def test_return_to_distributor(self, template, distributor, director, scientist):
        form_template_service.distribute(template.id, distributor, user_ids=[director.id], instructions="Please fill")
        child = workflow.delegate(director, template.id, scientist.id, remarks="Need your input")
        back = workflow.mark_back(scientist, child.id, return_to_id=distributor.id)

        timeline = workflow.get_chain_details(back.id)
        assert [e["type"] for e in timeline] == ["Initiated", "Delegated", "Returned"]
        assert timeline[0]["remarks"] == "Please fill"
        assert timeline[1]["remarks"] == "Need your input"
        assert timeline[2]["to_user"]["id"] == distributor.id

    def test_unknown_assignment(self):
        from refportal.core.exceptions import NotFoundError

        with pytest.raises(NotFoundError):
            workflow.get_chain_details(424242)


# ═════════════════════════════════════════════════════════════════════════
# RESOLVER ORDER
# ═════════════════════════════════════════════════════════════════════════


class TestResolvers:
    def test_same_data_prefers_latest_before_current(self):
        older = _row(1, 10, 20, minutes=0, data_id=5)
        newer = _row(2, 10, 20, minutes=5, data_id=5)
        other_data = _row(3, 10, 20, minutes=8, data_id=6)
        current = _row(4, 20, 30, minutes=10, data_id=5)
        ctx = ChainContext(target=current, template_rows=[older, newer, other_data, current])

        assert resolve_same_data_predecessor(current, ctx) is newer
        assert fallback_predecessor(current, ctx) is newer

    def test_template_wide_when_data_differs(self):
        elsewhere = _row(1, 10, 20, minutes=0, data_id=6)
        current = _row(2, 20, 30, minutes=10, data_id=5)
        ctx = ChainContext(target=current, template_rows=[elsewhere, current])

        assert resolve_same_data_predecessor(current, ctx) is None
        assert resolve_template_predecessor(current, ctx) is elsewhere
        assert fallback_predecessor(current, ctx) is elsewhere

    def test_root_of_last_resort(self):
        current = _row(1, 20, 30, minutes=0, parent=None)
        later_root = _row(2, 10, 20, minutes=30, parent=None)
        ctx = ChainContext(target=current, template_rows=[current, later_root])

        assert resolve_template_predecessor(current, ctx) is None
        assert resolve_root_predecessor(current, ctx) is later_root

    def test_chronological_ignores_assignee(self):
        unrelated = _row(1, 40, 50, minutes=0, data_id=5)
        current = _row(2, 20, 30, minutes=10, data_id=5)
        ctx = ChainContext(target=current, template_rows=[unrelated, current])

        assert resolve_root_predecessor(current, ctx) is None
        assert resolve_chronological_predecessor(current, ctx) is unrelated
        assert fallback_predecessor(current, ctx) is unrelated

    def test_same_timestamp_ordered_by_id(self):
        first = _row(1, 10, 20, minutes=0, data_id=5)
        second = _row(2, 10, 20, minutes=0, data_id=5)
        current = _row(3, 20, 30, minutes=0, data_id=5)
        ctx = ChainContext(target=current, template_rows=[second, first, current])

        assert fallback_predecessor(current, ctx) is second

    def test_custom_resolver_list(self):
        older = _row(1, 10, 20, minutes=0, data_id=5)
        current = _row(2, 20, 30, minutes=10, data_id=5)
        ctx = ChainContext(target=current, template_rows=[older, current])

        assert fallback_predecessor(current, ctx, resolvers=()) is None


# ═════════════════════════════════════════════════════════════════════════
# CORRUPTED HISTORY
# ═════════════════════════════════════════════════════════════════════════


class TestCorruptedHistory:
    def test_parent_cycle_terminates(self):
        x = _row(1, 20, 10, minutes=0, parent=2)
        y = _row(2, 10, 20, minutes=5, parent=1)

        timeline = build_timeline(x, [x, y])
        assert sorted(e["id"] for e in timeline) == [1, 2]

    def test_descendant_cycle_terminates(self):
        # Root points forward at its grandchild, which fails the continuity check
        root = _row(1, 10, 20, minutes=0, parent=3)
        hop = _row(2, 20, 30, minutes=5, parent=1)
        tail = _row(3, 30, 40, minutes=10, parent=2)

        timeline = build_timeline(hop, [root, hop, tail])
        assert [e["id"] for e in timeline] == [1, 2, 3]
        assert [e["is_current"] for e in timeline] == [False, True, False]

    def test_broken_parent_pointer_falls_back(self):
        root = _row(1, 10, 20, minutes=0)
        hop = _row(2, 20, 30, minutes=5, parent=1, data_id=7)
        stray = _row(3, 40, 50, minutes=6)
        # Points at stray, but stray.assigned_to != 30
        broken = _row(4, 30, 60, minutes=10, parent=3, data_id=7)

        timeline = build_timeline(broken, [root, hop, stray, broken])
        assert [e["id"] for e in timeline] == [1, 2, 4]

    def test_legacy_mark_back_without_origin(self):
        root = _row(1, 10, 20, minutes=0)
        hop = _row(2, 20, 30, minutes=5, parent=1)
        back = _row(3, 30, 20, minutes=9, parent=1, last_action="Marked Back")

        timeline = build_timeline(back, [root, hop, back])
        assert [e["type"] for e in timeline] == ["Initiated", "Delegated", "Returned"]

    def test_origin_overrides_last_action(self):
        root = _row(1, 10, 20, minutes=0)
        back = _row(2, 30, 20, minutes=5, parent=None, origin="mark_back", last_action="Approved")
        hop = _row(3, 20, 30, minutes=2, parent=1)

        timeline = build_timeline(back, [root, hop, back])
        assert timeline[-1]["type"] == "Returned"

    def test_empty_remarks_default_for_delegation(self):
        root = _row(1, 10, 20, minutes=0)
        timeline = build_timeline(root, [root])
        assert timeline[0]["remarks"] == "Please fill the form"


# ═════════════════════════════════════════════════════════════════════════
# MOVEMENT HISTORY FALLBACK
# ═════════════════════════════════════════════════════════════════════════


class TestMovementFallback:
    def test_submission_without_assignments(self, template, scientist, director):
        submission = Submission(
            template_id=template.id, submitted_by=scientist.id, data={"f1": "legacy"}, status="Submitted",
        )
        db.session.add(submission)
        submission.record_movement(scientist.id, "Draft Created", "Initial draft saved")
        submission.record_movement(scientist.id, "Sent for Approval", "Please check")
        submission.record_movement(director.id, "Submitted", "Done")
        db.session.commit()

        timeline, source = workflow.get_chain_by_submission_id(submission.id)
        assert source == "movement_history"
        assert [e["type"] for e in timeline] == ["Initiated", "Returned", "Submitted"]
        assert timeline[0]["from_user"]["id"] == scientist.id
        assert all(e["to_user"] is None for e in timeline)
        assert [e["is_current"] for e in timeline] == [False, False, True]

    def test_unknown_submission(self):
        from refportal.core.exceptions import NotFoundError

        with pytest.raises(NotFoundError):
            workflow.get_chain_by_submission_id(99999)
