"""
Chain timeline reconstruction (read-only).

Given any assignment, rebuild the custody timeline from the distribution
root to the latest known activity. Parent pointers are not guaranteed to be
intact on historical rows, so the ancestor walk verifies continuity
(``parent.assigned_to == current.assigned_by``) and otherwise falls through
an ordered list of resolvers:

    a. same data_id, assigned_to == current.assigned_by, latest strictly before
    b. as (a) across the whole template
    c. assigned_to == current.assigned_by with no parent (root of last resort)
    d. latest assignment in the candidate pool strictly before current,
       ignoring assigned_to

Resolver (d) can attach a causally unrelated hop when two branches happen
to be adjacent in time. It is kept as-is; callers that need certainty
should check ``parent_assignment_id`` on the returned rows.

The walk never raises on inconsistent history: every loop is bounded by a
visited set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from refportal.models.workflow import (
    ACTION_MARKED_BACK,
    ACTION_SUBMITTED,
    DEFAULT_INSTRUCTIONS,
    ORIGIN_MARK_BACK,
    STATUS_SUBMITTED,
    FormAssignment,
    Submission,
)
from refportal.services.approval_authority import get_approval_authority_designations
from refportal.services.assignment_store import created_after, created_before, sort_key

logger = logging.getLogger(__name__)

TYPE_INITIATED = "Initiated"
TYPE_DELEGATED = "Delegated"
TYPE_RETURNED = "Returned"
TYPE_SUBMITTED = "Submitted"
TYPE_ACTION = "Action"


@dataclass
class ChainContext:
    """Candidate sets for one reconstruction.

    ``template_rows`` is every assignment on the template; it is kept
    sorted oldest first.
    ``chain_rows`` is the subset sharing the target's data_id (or all of
    them when the target has no data_id).
    """

    target: FormAssignment
    template_rows: list[FormAssignment]
    chain_rows: list[FormAssignment] = field(init=False)
    chain_by_id: dict[int, FormAssignment] = field(init=False)
    template_by_id: dict[int, FormAssignment] = field(init=False)

    def __post_init__(self):
        self.template_rows = sorted(self.template_rows, key=sort_key)
        if self.target.data_id is not None:
            self.chain_rows = [a for a in self.template_rows if a.data_id == self.target.data_id]
        else:
            self.chain_rows = list(self.template_rows)
        self.chain_by_id = {a.id: a for a in self.chain_rows}
        self.template_by_id = {a.id: a for a in self.template_rows}

    def lookup(self, assignment_id):
        if assignment_id is None:
            return None
        return self.chain_by_id.get(assignment_id) or self.template_by_id.get(assignment_id)


# ── Predecessor resolvers ────────────────────────────────────────────────────


def _latest(rows):
    return rows[-1] if rows else None


def resolve_same_data_predecessor(current: FormAssignment, ctx: ChainContext):
    """(a) Holder of current.assigned_by on the same Submission, latest before current."""
    if current.data_id is None:
        return None
    return _latest([
        a for a in ctx.template_rows
        if a.data_id == current.data_id
        and a.assigned_to == current.assigned_by
        and created_before(a, current)
    ])


def resolve_template_predecessor(current: FormAssignment, ctx: ChainContext):
    """(b) Holder of current.assigned_by anywhere on the template, latest before current."""
    return _latest([
        a for a in ctx.template_rows
        if a.assigned_to == current.assigned_by and created_before(a, current)
    ])


def resolve_root_predecessor(current: FormAssignment, ctx: ChainContext):
    """(c) A root assignment held by current.assigned_by."""
    for a in ctx.template_rows:
        if a.assigned_to == current.assigned_by and a.is_root and a.id != current.id:
            return a
    return None


def resolve_chronological_predecessor(current: FormAssignment, ctx: ChainContext):
    """(d) Whatever in the candidate pool was created just before current."""
    return _latest([a for a in ctx.chain_rows if created_before(a, current)])


PREDECESSOR_RESOLVERS = (
    resolve_same_data_predecessor,
    resolve_template_predecessor,
    resolve_root_predecessor,
    resolve_chronological_predecessor,
)


def linked_parent(current: FormAssignment, ctx: ChainContext):
    """The pointed-to parent if it passes the continuity check, else None."""
    parent = ctx.lookup(current.parent_assignment_id)
    if parent is None:
        return None
    if parent.assigned_to != current.assigned_by:
        logger.debug(
            "Continuity check failed",
            extra={"assignment_id": current.id, "parent_assignment_id": parent.id},
        )
        return None
    return parent


def fallback_predecessor(current: FormAssignment, ctx: ChainContext, resolvers=PREDECESSOR_RESOLVERS):
    """First candidate produced by *resolvers*, tried in order."""
    for resolver in resolvers:
        candidate = resolver(current, ctx)
        if candidate is not None:
            return candidate
    return None


def walk_ancestors(ctx: ChainContext, visited: set[int], resolvers=PREDECESSOR_RESOLVERS) -> list[FormAssignment]:
    """Target plus its ancestors, oldest first."""
    lineage: list[FormAssignment] = []
    current = ctx.lookup(ctx.target.id) or ctx.target

    while current is not None:
        if current.id in visited:
            break
        visited.add(current.id)
        lineage.insert(0, current)

        parent = linked_parent(current, ctx)
        if parent is not None:
            current = parent
            continue

        prev = fallback_predecessor(current, ctx, resolvers)
        if prev is None or prev.id in visited:
            break
        current = prev

    return lineage


def walk_descendants(ctx: ChainContext, visited: set[int]) -> list[FormAssignment]:
    """Successors of the target, in custody order."""
    successors: list[FormAssignment] = []
    current = ctx.lookup(ctx.target.id) or ctx.target

    while current is not None:
        nxt = next(
            (a for a in ctx.template_rows if a.parent_assignment_id == current.id),
            None,
        )
        if nxt is None:
            nxt = next(
                (a for a in ctx.template_rows
                 if a.assigned_by == current.assigned_to and created_after(a, current)),
                None,
            )
        if nxt is None or nxt.id in visited:
            break
        visited.add(nxt.id)
        successors.append(nxt)
        current = nxt

    return successors


# ── Entry mapping ────────────────────────────────────────────────────────────


def _user_summary(user, designations):
    if user is None:
        return None
    summary = user.to_summary()
    summary["has_approval_authority"] = bool(user.designation) and user.designation in designations
    return summary


def _iso(value):
    return value.isoformat() if value is not None else None


def _hop_type(index: int, segment: FormAssignment) -> str:
    if index == 0:
        return TYPE_INITIATED
    if segment.origin == ORIGIN_MARK_BACK or segment.last_action == ACTION_MARKED_BACK:
        return TYPE_RETURNED
    return TYPE_DELEGATED


def _to_entry(index: int, segment: FormAssignment, highlight_id, designations) -> dict:
    entry_type = _hop_type(index, segment)
    remarks = segment.instructions or segment.remarks
    if not remarks and entry_type in (TYPE_INITIATED, TYPE_DELEGATED):
        remarks = DEFAULT_INSTRUCTIONS
    return {
        "id": segment.id,
        "type": entry_type,
        "from_user": _user_summary(segment.assigner, designations),
        "to_user": _user_summary(segment.assignee, designations),
        "date": _iso(segment.created_at),
        "remarks": remarks,
        "action": segment.last_action,
        "status": segment.status,
        "is_current": segment.id == highlight_id,
    }


def build_timeline(target: FormAssignment, template_rows: list[FormAssignment], highlight_id=None) -> list[dict]:
    """Reconstruct the ordered custody timeline around *target*.

    Args:
        target: Any assignment on the chain.
        template_rows: Every assignment on target's template.
        highlight_id: Assignment to flag with ``is_current`` (defaults to target).
    """
    highlight_id = target.id if highlight_id is None else highlight_id
    ctx = ChainContext(target=target, template_rows=list(template_rows))

    visited: set[int] = set()
    segments = walk_ancestors(ctx, visited) + walk_descendants(ctx, visited)

    designations = get_approval_authority_designations()
    timeline = [_to_entry(i, seg, highlight_id, designations) for i, seg in enumerate(segments)]

    if segments:
        last = segments[-1]
        terminal_status = last.submission.status if last.submission is not None else last.status
        if terminal_status == STATUS_SUBMITTED or last.status == STATUS_SUBMITTED:
            distributor = segments[0].assigner
            timeline.append({
                "id": f"{last.id}_submitted",
                "type": TYPE_RETURNED,
                "from_user": _user_summary(last.assignee, designations),
                "to_user": _user_summary(distributor, designations),
                "date": _iso(last.updated_at),
                "remarks": last.remarks,
                "action": ACTION_SUBMITTED,
                "status": STATUS_SUBMITTED,
                "is_current": True,
            })

    logger.debug(
        "Timeline built",
        extra={"assignment_id": target.id, "entries": len(timeline)},
    )
    return timeline


def timeline_from_movements(submission: Submission) -> list[dict]:
    """Flattened timeline from a Submission's own movement log.

    Used when no assignment references the submission. The receiving user
    is not recorded in the log, so ``to_user`` is always None.
    """
    designations = get_approval_authority_designations()
    history = list(submission.movement_history)
    timeline = []
    for index, move in enumerate(history):
        entry_type = TYPE_INITIATED if index == 0 else TYPE_ACTION
        if move.action == "Delegated":
            entry_type = TYPE_DELEGATED
        elif move.action == ACTION_SUBMITTED:
            entry_type = TYPE_SUBMITTED
        elif move.action in (ACTION_MARKED_BACK, "Sent for Approval"):
            entry_type = TYPE_RETURNED
        timeline.append({
            "id": move.id,
            "type": entry_type,
            "from_user": _user_summary(move.performer, designations),
            "to_user": None,
            "date": _iso(move.timestamp),
            "remarks": move.remarks,
            "action": move.action,
            "status": submission.status,
            "is_current": index == len(history) - 1,
        })
    return timeline
