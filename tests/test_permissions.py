from __future__ import annotations

import pytest

from linguacat.models import Role, SegmentStatus
from linguacat.permissions import can_edit, can_review

S = SegmentStatus

EXPECTED_EDIT = {
    Role.OWNER: {S.DRAFT, S.TRANSLATED, S.APPROVED_BY_P1, S.APPROVED_BY_P2, S.REJECTED},
    Role.PROJECT_LEADER: {S.DRAFT, S.TRANSLATED, S.APPROVED_BY_P1, S.APPROVED_BY_P2, S.REJECTED},
    Role.TRANSLATOR: {S.DRAFT, S.REJECTED},
    Role.PROOFREADER_1: {S.TRANSLATED, S.REJECTED},
    Role.PROOFREADER_2: {S.APPROVED_BY_P1},
}


@pytest.mark.parametrize("role", list(Role))
@pytest.mark.parametrize("status", list(SegmentStatus))
def test_edit_matrix_covers_every_role_and_status(role, status):
    assert can_edit([role], status) is (status in EXPECTED_EDIT[role])


def test_finalized_is_locked_for_everyone():
    assert not can_edit(list(Role), SegmentStatus.FINALIZED)
    assert not can_review(list(Role), SegmentStatus.FINALIZED, 1)
    assert not can_review(list(Role), SegmentStatus.FINALIZED, 2)


def test_roles_are_unioned_and_accept_strings():
    assert can_edit(["Translator", "Proofreader 2"], "approved_by_p1")
    assert not can_edit([], SegmentStatus.DRAFT)
    assert not can_edit(["Nobody"], SegmentStatus.DRAFT)


def test_review_stages():
    assert can_review([Role.PROOFREADER_1], S.TRANSLATED, 1)
    assert can_review([Role.PROOFREADER_1], S.REJECTED, 1)
    assert not can_review([Role.PROOFREADER_1], S.APPROVED_BY_P1, 2)
    assert can_review([Role.PROOFREADER_2], S.APPROVED_BY_P1, 2)
    assert not can_review([Role.PROOFREADER_2], S.TRANSLATED, 1)
    assert can_review([Role.PROJECT_LEADER], S.APPROVED_BY_P1, 2)
    assert not can_review([Role.TRANSLATOR], S.TRANSLATED, 1)


def test_review_rejects_unknown_stage():
    with pytest.raises(ValueError, match="Invalid review stage"):
        can_review([Role.OWNER], S.TRANSLATED, 3)
