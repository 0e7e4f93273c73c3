from __future__ import annotations

from collections.abc import Iterable

from .models import Role, SegmentStatus

_ALL_BUT_FINALIZED = frozenset(s for s in SegmentStatus if s is not SegmentStatus.FINALIZED)

EDIT_MATRIX: dict[Role, frozenset[SegmentStatus]] = {
    Role.OWNER: _ALL_BUT_FINALIZED,
    Role.PROJECT_LEADER: _ALL_BUT_FINALIZED,
    Role.TRANSLATOR: frozenset({SegmentStatus.DRAFT, SegmentStatus.REJECTED}),
    Role.PROOFREADER_1: frozenset({SegmentStatus.TRANSLATED, SegmentStatus.REJECTED}),
    Role.PROOFREADER_2: frozenset({SegmentStatus.APPROVED_BY_P1}),
}

# review stage -> (roles allowed to review, statuses that can be reviewed at that stage)
REVIEW_MATRIX: dict[int, tuple[frozenset[Role], frozenset[SegmentStatus]]] = {
    1: (
        frozenset({Role.PROOFREADER_1, Role.PROJECT_LEADER, Role.OWNER}),
        frozenset({SegmentStatus.TRANSLATED, SegmentStatus.REJECTED}),
    ),
    2: (
        frozenset({Role.PROOFREADER_2, Role.PROJECT_LEADER, Role.OWNER}),
        frozenset({SegmentStatus.APPROVED_BY_P1}),
    ),
}


def _coerce_roles(roles: Iterable[Role | str] | None) -> set[Role]:
    out: set[Role] = set()
    for role in roles or ():
        try:
            out.add(Role(role))
        except ValueError:
            continue
    return out


def can_edit(roles: Iterable[Role | str] | None, status: SegmentStatus | str) -> bool:
    """Return True if any of `roles` may edit a segment in `status`."""
    st = SegmentStatus(status)
    return any(st in EDIT_MATRIX[role] for role in _coerce_roles(roles))


def can_review(roles: Iterable[Role | str] | None, status: SegmentStatus | str, stage: int) -> bool:
    if stage not in REVIEW_MATRIX:
        raise ValueError(f"Invalid review stage: {stage!r}. Allowed: 1, 2")
    allowed_roles, allowed_statuses = REVIEW_MATRIX[stage]
    return SegmentStatus(status) in allowed_statuses and bool(_coerce_roles(roles) & allowed_roles)
