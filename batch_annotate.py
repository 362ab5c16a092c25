#!/usr/bin/env python3
"""
Batch annotation: run the Annotation Service over every meme in a status scope.

Items are processed strictly one after another (one outstanding service call
at a time). A failing item is counted and skipped; it never aborts the batch.
"""
import sys
import argparse
import logging
import threading
from datetime import datetime
from pathlib import Path

from annotation_api import AnnotationServiceError, ConfigurationError
from annotator import AnnotationController, MemeCollection, Notice, PreconditionError
from config import get_db_path
from lifecycle import ANNOTATE, GENERATE_CONTEXT, STATUSES, batch_scope_status
from meme_store import MemeStore, StoreError

logger = logging.getLogger(__name__)

OPERATION_LABELS = {
    ANNOTATE: 'Batch annotation',
    GENERATE_CONTEXT: 'Batch context generation',
}
NOTHING_TO_DO = {
    ANNOTATE: "No memes with 'uploaded' status found to annotate",
    GENERATE_CONTEXT: "No memes with 'half_annotated' status found to generate context for",
}

class BatchReport(Notice):
    """Final tally of a batch run."""

    def __init__(self, level, message, operation, success_count=0, failure_count=0, total=0, error_type=None):
        super().__init__(level, message, error_type=error_type, operation=operation,
                         success_count=success_count, failure_count=failure_count, total=total)
        self.operation = operation
        self.success_count = success_count
        self.failure_count = failure_count
        self.total = total

class BatchAnnotator:
    """
    Drives annotate / generate-context across a status scope of the collection.

    Only one batch runs at a time. Single-meme operations are not blocked
    while a batch runs, and memes are not locked: a concurrent manual edit to
    a meme in scope may be overwritten (last write wins).
    """

    def __init__(self, controller, client_factory=None, on_progress=None):
        self.controller = controller
        self.client_factory = client_factory or controller.client_factory
        self.on_progress = on_progress
        self.active = None
        self.progress = (0, 0)
        self.last_report = None
        self._lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._thread = None

    @property
    def collection(self):
        return self.controller.collection

    def _set_progress(self, current, total):
        self.progress = (current, total)
        if self.on_progress:
            self.on_progress(current, total)

    def annotate_all(self):
        """Annotate every meme with status 'uploaded'."""
        return self.run(ANNOTATE)

    def generate_context_for_all(self):
        """Generate context for every meme with status 'half_annotated'."""
        return self.run(GENERATE_CONTEXT)

    def run(self, operation, client=None):
        label = OPERATION_LABELS[operation]
        if not self._lock.acquire(blocking=False):
            logger.warning("%s rejected: %s already running", label, self.active)
            return BatchReport(Notice.ERROR, f"Another batch operation is already running ({self.active})",
                               operation, error_type="BatchInProgress")
        try:
            self.active = operation
            report = self._run_locked(operation, label, client)
            self.last_report = report
            return report
        finally:
            self.active = None
            self._lock.release()

    def _run_locked(self, operation, label, client=None):
        if client is None:
            try:
                client = self.client_factory()
            except ConfigurationError as e:
                logger.error("%s aborted: %s", label, e)
                return BatchReport(Notice.ERROR, str(e), operation, error_type=type(e).__name__)

        scope = self.collection.with_status(batch_scope_status(operation))
        if not scope:
            logger.info(NOTHING_TO_DO[operation])
            return BatchReport(Notice.INFO, NOTHING_TO_DO[operation], operation)

        total = len(scope)
        success_count = 0
        failure_count = 0
        self._set_progress(0, total)
        logger.info("%s started: %d meme(s)", label, total)

        try:
            for index, meme in enumerate(scope):
                self._set_progress(index + 1, total)

                if not meme.get('uploaded_meme_url'):
                    logger.warning("Skipping meme %s: missing URL", meme['id'])
                    failure_count += 1
                    continue

                try:
                    self.controller.apply_service_operation(operation, client, meme)
                except (PreconditionError, AnnotationServiceError, StoreError) as e:
                    logger.error("%s failed for meme %s: %s", label, meme['id'], e)
                    failure_count += 1
                    continue
                success_count += 1
        finally:
            self._set_progress(0, 0)

        message = f"{label} completed: {success_count} successful, {failure_count} failed"
        logger.info(message)
        return BatchReport(Notice.SUCCESS, message, operation, success_count, failure_count, total)

    # -- background execution (web) -----------------------------------------

    def start(self, operation, client=None):
        """Run `operation` on a daemon thread. Returns the thread, or None if a batch is running."""
        with self._start_lock:
            if self.is_running():
                return None
            thread = threading.Thread(target=self.run, args=(operation, client), name=f"batch-{operation}", daemon=True)
            self._thread = thread
            thread.start()
        return thread

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def is_running(self):
        return self.active is not None or (self._thread is not None and self._thread.is_alive())

    def status(self):
        current, total = self.progress
        return {
            'active': self.active,
            'running': self.is_running(),
            'current': current,
            'total': total,
            'last_report': self.last_report.to_dict() if self.last_report else None,
        }

def _print_progress(current, total):
    if total:
        print(f"  → [{current}/{total}]")

def build_batch(db_path=None, on_progress=None):
    """Load every meme from the store into a fresh collection and wire a batch runner."""
    store = MemeStore(db_path)
    collection = MemeCollection(store.list_memes())
    controller = AnnotationController(collection, store)
    return BatchAnnotator(controller, on_progress=on_progress)

def show_stats(store):
    """Show database statistics"""
    counts = store.status_counts()
    print("\n📊 Database Statistics:")
    print(f"   Total memes: {sum(counts.values())}")
    for status in STATUSES:
        print(f"   - {status}: {counts.get(status, 0)}")
    for status, count in sorted(counts.items()):
        if status not in STATUSES:
            print(f"   - {status} (unknown): {count}")
    print()

def _print_notice(notice):
    icon = {'success': '✅', 'info': '✨', 'error': '❌'}[notice.level]
    print(f"{icon} {notice.message}")

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Meme Annotator: batch annotation against the Annotation Service"
    )
    parser.add_argument(
        '--annotate-all',
        action='store_true',
        help='Annotate all memes with "uploaded" status'
    )
    parser.add_argument(
        '--context-all',
        action='store_true',
        help='Generate context for all memes with "half_annotated" status'
    )
    parser.add_argument(
        '--annotate-one',
        type=int,
        help='Generate annotation for a single meme by its id'
    )
    parser.add_argument(
        '--context-one',
        type=int,
        help='Generate context for a single meme by its id'
    )
    parser.add_argument(
        '--stats',
        action='store_true',
        help='Show database statistics'
    )

    args = parser.parse_args(argv)

    # If no arguments provided, show help
    if not any(value not in (None, False) for value in vars(args).values()):
        parser.print_help()
        return 0

    if not Path(get_db_path()).exists():
        print("❌ Database not found. Please run init_database.py first!")
        return 1

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    batch = build_batch(on_progress=_print_progress)
    controller = batch.controller
    exit_code = 0

    if args.stats:
        show_stats(controller.store)

    for meme_id, action in ((args.annotate_one, controller.generate_annotation),
                            (args.context_one, controller.generate_context)):
        if meme_id is None:
            continue
        print("================================")
        print(f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}: Starting single meme run (id={meme_id})")
        print("================================")
        notice = action(meme_id)
        _print_notice(notice)
        if not notice.ok:
            exit_code = 1

    for enabled, operation in ((args.annotate_all, ANNOTATE), (args.context_all, GENERATE_CONTEXT)):
        if not enabled:
            continue
        print("================================")
        print(f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}: {OPERATION_LABELS[operation]} starting")
        print("================================")
        report = batch.run(operation)
        _print_notice(report)
        if not report.ok or report.failure_count:
            exit_code = 1

    if args.annotate_all or args.context_all:
        show_stats(controller.store)
    return exit_code

if __name__ == "__main__":
    sys.exit(main())
