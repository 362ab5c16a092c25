"""
Annotation status lifecycle for memes.

    uploaded -> half_annotated -> fully_annotated

Statuses are matched exactly (case-sensitive). The Annotation Service is the
authority for the status after annotation; we only supply the fallback.
"""
import logging

logger = logging.getLogger(__name__)

UPLOADED = 'uploaded'
HALF_ANNOTATED = 'half_annotated'
FULLY_ANNOTATED = 'fully_annotated'

STATUSES = (UPLOADED, HALF_ANNOTATED, FULLY_ANNOTATED)

# Batch operation name -> status a meme must have to be in scope
ANNOTATE = 'annotate'
GENERATE_CONTEXT = 'generate_context'
BATCH_SCOPES = {
    ANNOTATE: UPLOADED,
    GENERATE_CONTEXT: HALF_ANNOTATED,
}

def is_known_status(status):
    return status in STATUSES

def status_after_annotate(returned_status=None):
    """Status a meme takes after a successful annotate call."""
    if not returned_status:
        return HALF_ANNOTATED
    if not is_known_status(returned_status):
        logger.warning("Annotation service returned unknown status %r; keeping it", returned_status)
    return returned_status

def status_after_context():
    """Generating context always completes the annotation."""
    return FULLY_ANNOTATED

def can_transition(current, new):
    """True if moving from `current` to `new` never goes backwards."""
    if new == current:
        return True
    if not (is_known_status(current) and is_known_status(new)):
        return False
    return STATUSES.index(new) > STATUSES.index(current)

def batch_scope_status(operation):
    """Return the status selecting the batch scope of `operation`."""
    try:
        return BATCH_SCOPES[operation]
    except KeyError:
        raise ValueError(f"Unknown batch operation: {operation}")

def context_editable(meme):
    """Manual context edits are only enabled once a meme is fully annotated."""
    return meme.get('annotation_status') == FULLY_ANNOTATED
