"""Unit tests for the annotation status lifecycle."""

import pytest

from lifecycle import (
    ANNOTATE,
    FULLY_ANNOTATED,
    GENERATE_CONTEXT,
    HALF_ANNOTATED,
    UPLOADED,
    batch_scope_status,
    can_transition,
    context_editable,
    is_known_status,
    status_after_annotate,
    status_after_context,
)


def test_status_after_annotate_defaults_to_half_annotated():
    assert status_after_annotate(None) == HALF_ANNOTATED
    assert status_after_annotate('') == HALF_ANNOTATED


def test_status_after_annotate_trusts_service():
    assert status_after_annotate(FULLY_ANNOTATED) == FULLY_ANNOTATED
    # Unknown values from the service are kept verbatim
    assert status_after_annotate('needs_review') == 'needs_review'


def test_status_after_context_is_always_fully_annotated():
    assert status_after_context() == FULLY_ANNOTATED


@pytest.mark.parametrize("current,new,allowed", [
    (UPLOADED, HALF_ANNOTATED, True),
    (HALF_ANNOTATED, FULLY_ANNOTATED, True),
    (UPLOADED, FULLY_ANNOTATED, True),
    (FULLY_ANNOTATED, FULLY_ANNOTATED, True),
    (HALF_ANNOTATED, UPLOADED, False),
    (FULLY_ANNOTATED, UPLOADED, False),
    (FULLY_ANNOTATED, HALF_ANNOTATED, False),
    (UPLOADED, 'Uploaded', False),
])
def test_can_transition(current, new, allowed):
    assert can_transition(current, new) is allowed


def test_status_matching_is_exact():
    assert is_known_status(UPLOADED)
    assert not is_known_status('UPLOADED')
    assert not is_known_status(' uploaded')


def test_batch_scopes():
    assert batch_scope_status(ANNOTATE) == UPLOADED
    assert batch_scope_status(GENERATE_CONTEXT) == HALF_ANNOTATED
    with pytest.raises(ValueError):
        batch_scope_status('delete_everything')


def test_context_editable_only_when_fully_annotated():
    assert context_editable({'annotation_status': FULLY_ANNOTATED})
    assert not context_editable({'annotation_status': HALF_ANNOTATED})
    assert not context_editable({})
