"""
Single-meme annotation: the shared in-memory meme collection and the
controller that applies manual edits and Annotation Service results to one
meme at a time.

Controller operations never raise. Each one returns a Notice describing the
outcome for the user and logs a diagnostic entry.
"""
import logging
import threading

from annotation_api import AnnotationClient, AnnotationServiceError, ConfigurationError
from lifecycle import (
    ANNOTATE,
    GENERATE_CONTEXT,
    can_transition,
    context_editable,
    status_after_annotate,
    status_after_context,
)
from meme_store import ROLE_FIELDS, StoreError

logger = logging.getLogger(__name__)

# Role kind (as used in URLs and forms) -> meme field
ROLE_KINDS = {
    'hero': 'heroes',
    'villain': 'villains',
    'victim': 'victims',
    'other': 'other_roles',
}
ROLE_LABELS = {
    'hero': 'Hero',
    'villain': 'Villain',
    'victim': 'Victim',
    'other': 'Other role',
}

ANNOTATION_FIELDS = ('annotation_status', 'heroes', 'villains', 'victims', 'other_roles',
                     'sentiment', 'explanation', 'genre')
CONTEXT_FIELDS = ('context', 'annotation_status')

class ValidationError(Exception):
    """User input rejected before any call is made."""

class PreconditionError(Exception):
    """The meme is not in a state that allows the operation."""

class Notice:
    """User-facing outcome of an operation (what the UI shows as a toast)."""

    SUCCESS = 'success'
    INFO = 'info'
    ERROR = 'error'

    def __init__(self, level, message, meme=None, error_type=None, **extra):
        self.level = level
        self.message = message
        self.meme = meme
        self.error_type = error_type
        self.extra = extra

    @classmethod
    def from_error(cls, error, message=None):
        return cls(cls.ERROR, message or str(error), error_type=type(error).__name__)

    @property
    def ok(self):
        return self.level != self.ERROR

    def to_dict(self):
        data = {'success': self.ok, 'level': self.level, 'message': self.message}
        if self.meme is not None:
            data['meme'] = self.meme
        if self.error_type:
            data['error_type'] = self.error_type
        data.update(self.extra)
        return data

    def __repr__(self):
        return f"Notice({self.level!r}, {self.message!r})"

def _role_list(data, field):
    """Role list from a service response; a bare string counts as one role."""
    value = data.get(field)
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise AnnotationServiceError(f"Malformed response: {field} must be a list, got {type(value).__name__}")
    return [str(role) for role in value]

def _text(data, field):
    value = data.get(field)
    if not value:
        return ''
    if not isinstance(value, str):
        raise AnnotationServiceError(f"Malformed response: {field} must be text, got {type(value).__name__}")
    return value

def merge_annotation(meme, data):
    """
    Merge an annotate response into a copy of `meme`, defaulting every omitted field.

    Raises AnnotationServiceError when a field has the wrong type.
    """
    merged = dict(meme)
    merged['annotation_status'] = status_after_annotate(_text(data, 'annotation_status'))
    if not can_transition(meme.get('annotation_status'), merged['annotation_status']):
        logger.warning("Meme %s status moves from %r to %r", meme.get('id'),
                       meme.get('annotation_status'), merged['annotation_status'])
    for field in ROLE_FIELDS:
        merged[field] = _role_list(data, field)
    for field in ('sentiment', 'explanation', 'genre'):
        merged[field] = _text(data, field)
    return merged

def merge_context(meme, data):
    """Merge a generate-context response into a copy of `meme`."""
    merged = dict(meme)
    merged['context'] = _text(data, 'context')
    merged['annotation_status'] = status_after_context()
    return merged

class MemeCollection:
    """
    In-memory copy of the memes shared by the list view and the editor.

    All updates go through replace(), which swaps a meme by identifier. The
    lock only keeps the list structure consistent; it does not serialize
    edits to the same meme.
    """

    def __init__(self, memes=None):
        self._lock = threading.RLock()
        self._memes = list(memes or [])
        self._selected_id = self._memes[0]['id'] if self._memes else None

    def load(self, memes):
        """Replace the whole collection (full re-sync from the store)."""
        with self._lock:
            self._memes = list(memes)
            ids = {m['id'] for m in self._memes}
            if self._selected_id not in ids:
                self._selected_id = self._memes[0]['id'] if self._memes else None

    def __len__(self):
        return len(self._memes)

    def all(self):
        with self._lock:
            return list(self._memes)

    def get(self, meme_id):
        with self._lock:
            for meme in self._memes:
                if meme['id'] == meme_id:
                    return meme
        return None

    def add(self, meme):
        with self._lock:
            if self.get(meme['id']) is None:
                self._memes.append(meme)
            else:
                self.replace(meme)

    @property
    def selected(self):
        return self.get(self._selected_id) if self._selected_id is not None else None

    def select(self, meme_id):
        meme = self.get(meme_id)
        if meme is not None:
            self._selected_id = meme_id
        return meme

    def replace(self, meme):
        """Update-in-place by identifier. Returns False if the meme is unknown."""
        with self._lock:
            for index, existing in enumerate(self._memes):
                if existing['id'] == meme['id']:
                    self._memes[index] = meme
                    return True
        return False

    def with_status(self, status):
        """Memes whose status matches exactly, in collection order."""
        with self._lock:
            return [m for m in self._memes if m.get('annotation_status') == status]

    def search(self, query='', status='all'):
        """Filter by case-insensitive file name substring and exact status ('all' matches any)."""
        query = (query or '').lower()
        status = status or 'all'
        with self._lock:
            return [
                m for m in self._memes
                if m.get('file_name') and query in m['file_name'].lower()
                and (status == 'all' or m.get('annotation_status') == status)
            ]

    def statuses(self):
        with self._lock:
            return sorted({m.get('annotation_status') for m in self._memes if m.get('annotation_status')})

    def neighbours(self, meme_id):
        """(previous id, next id) around `meme_id`, wrapping at both ends."""
        with self._lock:
            ids = [m['id'] for m in self._memes]
        if meme_id not in ids:
            return None, None
        index = ids.index(meme_id)
        return ids[(index - 1) % len(ids)], ids[(index + 1) % len(ids)]

    def at_position(self, position, query='', status='all'):
        """Meme at 1-based `position` of the filtered list, or None if out of range."""
        filtered = self.search(query, status)
        if 1 <= position <= len(filtered):
            return filtered[position - 1]
        return None

class AnnotationController:
    """Applies manual edits and Annotation Service results to single memes."""

    def __init__(self, collection, store, client_factory=None):
        self.collection = collection
        self.store = store
        self.client_factory = client_factory or AnnotationClient.from_config

    # -- helpers ---------------------------------------------------------

    def _meme(self, meme_id):
        meme = self.collection.get(meme_id)
        if meme is None:
            meme = self.store.get_meme(meme_id)
            if meme is None:
                raise PreconditionError(f"Meme {meme_id} not found")
            self.collection.add(meme)
        return meme

    def _commit(self, meme, fields):
        """Persist `fields` of `meme`, then replace it in the collection."""
        self.store.update(meme['id'], {field: meme[field] for field in fields})
        self.collection.replace(meme)
        return meme

    def _failure(self, action, meme_id, error):
        logger.error("Failed to %s for meme %s: %s", action, meme_id, error)
        return Notice.from_error(error, f"Failed to {action}: {error}")

    # -- manual edits ----------------------------------------------------

    def update_ocr_text(self, meme_id, text):
        try:
            meme = self._meme(meme_id)
            updated = self._commit(dict(meme, ocr_text=text or ''), ('ocr_text',))
        except (PreconditionError, StoreError) as e:
            return self._failure('update OCR text', meme_id, e)
        logger.info("OCR text updated for meme %s", meme_id)
        return Notice(Notice.SUCCESS, "OCR text updated successfully", updated)

    def update_explanation(self, meme_id, text):
        try:
            meme = self._meme(meme_id)
            updated = self._commit(dict(meme, explanation=text or ''), ('explanation',))
        except (PreconditionError, StoreError) as e:
            return self._failure('update explanation', meme_id, e)
        logger.info("Explanation updated for meme %s", meme_id)
        return Notice(Notice.SUCCESS, "Explanation updated successfully", updated)

    def update_context(self, meme_id, text):
        try:
            meme = self._meme(meme_id)
            if not context_editable(meme):
                raise PreconditionError("context can only be edited once the meme is fully annotated")
            updated = self._commit(dict(meme, context=text or ''), ('context',))
        except (PreconditionError, StoreError) as e:
            return self._failure('update context', meme_id, e)
        logger.info("Context updated for meme %s", meme_id)
        return Notice(Notice.SUCCESS, "Context updated successfully", updated)

    # -- role lists --------------------------------------------------------

    def _role_field(self, kind):
        try:
            return ROLE_KINDS[kind]
        except KeyError:
            raise ValidationError(f"Unknown role kind: {kind}")

    def _rejected(self, action, meme_id, error):
        logger.warning("Rejected %s for meme %s: %s", action, meme_id, error)
        return Notice.from_error(error)

    def _role_value(self, label, value):
        if value is None:
            value = ''
        if not isinstance(value, str):
            raise ValidationError(f"{label} name must be text")
        return value

    def add_role(self, meme_id, kind, value):
        """
        Append `value` to a role list and overwrite the whole list in the store.

        The value is stored as received; surrounding whitespace only matters
        for the empty check.
        """
        label = ROLE_LABELS.get(kind, 'Role')
        try:
            field = self._role_field(kind)
            value = self._role_value(label, value)
            if not value.strip():
                raise ValidationError(f"{label} name cannot be empty")
        except ValidationError as e:
            return self._rejected(f'add {label.lower()}', meme_id, e)

        try:
            meme = self._meme(meme_id)
            roles = list(meme.get(field) or []) + [value]
            updated = self._commit(dict(meme, **{field: roles}), (field,))
        except (PreconditionError, StoreError) as e:
            return self._failure(f'add {label.lower()}', meme_id, e)
        logger.info("Added %s %r to meme %s", kind, value, meme_id)
        return Notice(Notice.SUCCESS, f"{label} added successfully", updated)

    def remove_role(self, meme_id, kind, value):
        """Drop every exact match of `value` and overwrite the whole list in the store."""
        label = ROLE_LABELS.get(kind, 'Role')
        try:
            field = self._role_field(kind)
            value = self._role_value(label, value)
        except ValidationError as e:
            return self._rejected(f'remove {label.lower()}', meme_id, e)

        try:
            meme = self._meme(meme_id)
            current = meme.get(field) or []
            if not current:
                return Notice(Notice.INFO, f"No {field.replace('_', ' ')} to remove", meme)
            roles = [role for role in current if role != value]
            updated = self._commit(dict(meme, **{field: roles}), (field,))
        except (PreconditionError, StoreError) as e:
            return self._failure(f'remove {label.lower()}', meme_id, e)
        logger.info("Removed %s %r from meme %s", kind, value, meme_id)
        return Notice(Notice.SUCCESS, f"{label} removed successfully", updated)

    # -- Annotation Service ------------------------------------------------

    def apply_service_operation(self, operation, client, meme):
        """
        Call the service for `meme`, merge the result, persist and update the
        collection. Raises PreconditionError, AnnotationServiceError or
        StoreError; the meme is left unchanged on failure.
        """
        if not meme.get('uploaded_meme_url'):
            raise PreconditionError("meme is missing its image URL")
        if operation == ANNOTATE:
            data = client.annotate(meme['id'], meme['uploaded_meme_url'])
            return self._commit(merge_annotation(meme, data), ANNOTATION_FIELDS)
        if operation == GENERATE_CONTEXT:
            data = client.generate_context(meme['id'], meme['uploaded_meme_url'])
            return self._commit(merge_context(meme, data), CONTEXT_FIELDS)
        raise ValueError(f"Unknown operation: {operation}")

    def _generate(self, operation, action, meme_id):
        try:
            client = self.client_factory()
        except ConfigurationError as e:
            logger.error("Cannot %s for meme %s: %s", action, meme_id, e)
            return Notice.from_error(e)

        try:
            meme = self._meme(meme_id)
            updated = self.apply_service_operation(operation, client, meme)
        except (PreconditionError, AnnotationServiceError, StoreError) as e:
            return self._failure(action, meme_id, e)
        return updated

    def generate_annotation(self, meme_id):
        result = self._generate(ANNOTATE, 'generate annotation', meme_id)
        if isinstance(result, Notice):
            return result
        logger.info("Annotation generated for meme %s (status=%s)", meme_id, result['annotation_status'])
        return Notice(Notice.SUCCESS, "Annotation generated successfully", result)

    def generate_context(self, meme_id):
        result = self._generate(GENERATE_CONTEXT, 'generate context', meme_id)
        if isinstance(result, Notice):
            return result
        logger.info("Context generated for meme %s", meme_id)
        return Notice(Notice.SUCCESS, "Context generated successfully", result)
