#!/usr/bin/env python3
"""
Meme Annotator Web Interface
"""
from flask import Flask, request, jsonify, send_from_directory
from werkzeug.utils import secure_filename
from PIL import Image, UnidentifiedImageError
from pathlib import Path
import hashlib
import io
import logging
import os
from config import (
    get_db_path,
    get_memes_url_base,
    get_memes_dir,
    get_log_dir,
    get_host,
    get_port,
    get_max_upload_files,
    get_max_upload_size_mb,
)
from annotation_api import AnnotationClient, ConfigurationError
from annotator import AnnotationController, MemeCollection, Notice, ROLE_KINDS
from batch_annotate import BatchAnnotator, NOTHING_TO_DO
from init_database import init_database
from lifecycle import ANNOTATE, GENERATE_CONTEXT, STATUSES, batch_scope_status
from meme_store import MemeStore, StoreError

app = Flask(__name__)

ACCEPTED_FILE_TYPES = {'image/jpeg', 'image/png', 'image/jpg', 'image/gif', 'image/webp'}
IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp'}

# HTTP status per error type carried by a Notice
ERROR_STATUS = {
    'ValidationError': 400,
    'PreconditionError': 400,
    'ConfigurationError': 400,
    'BatchInProgress': 409,
    'AnnotationServiceError': 502,
    'StoreError': 502,
}

def configure_logging():
    """Write application and workflow logs to LOG_DIR/annotator.log"""
    log_dir = get_log_dir()
    os.makedirs(log_dir, exist_ok=True)
    handler = logging.FileHandler(os.path.join(log_dir, 'annotator.log'), encoding='utf-8')
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    for name in (None, 'annotator', 'batch_annotate', 'annotation_api', 'meme_store', 'lifecycle'):
        logger = app.logger if name is None else logging.getLogger(name)
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)

class AnnotatorState:
    """Store, shared meme collection, controller and batch runner of one database."""

    def __init__(self, db_path):
        init_database(db_path)
        self.store = MemeStore(db_path)
        self.collection = MemeCollection(self.store.list_memes())
        self.controller = AnnotationController(self.collection, self.store)
        self.batch = BatchAnnotator(self.controller)

    def reload(self):
        """Full re-sync of the collection from the store"""
        self.collection.load(self.store.list_memes())

def get_state():
    """Get annotator state for the configured database (built on first use)"""
    db_path = get_db_path()  # Get path fresh each time
    state = app.extensions.get('meme_annotator')
    if state is None or state.store.db_path != db_path:
        state = AnnotatorState(db_path)
        app.extensions['meme_annotator'] = state
    return state

def notice_response(notice):
    """Turn a Notice into a JSON response with a matching status code"""
    data = notice.to_dict()
    if notice.ok:
        return jsonify(data)
    data['error'] = notice.message
    return jsonify(data), ERROR_STATUS.get(notice.error_type, 400)

def parse_meme_id(value):
    """Meme ids arrive as JSON numbers or strings"""
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

def find_meme(state, meme_id):
    """Meme from the shared collection, falling back to the store"""
    return state.collection.get(meme_id) or state.store.get_meme(meme_id)

def meme_not_found(meme_id):
    return jsonify({'success': False, 'error': f'Meme {meme_id} not found'}), 404

@app.errorhandler(StoreError)
def handle_store_error(e):
    app.logger.error(f"Store error: {e}")
    return jsonify({'success': False, 'error': str(e)}), 502

@app.route('/files/<path:filename>')
def serve_meme_file(filename):
    """Serve uploaded meme images (source of uploaded_meme_url)"""
    return send_from_directory(get_memes_dir(), filename)

@app.route('/api/memes', methods=['GET'])
def list_memes():
    """List memes filtered by file name search and status"""
    state = get_state()
    if request.args.get('refresh') in ('1', 'true', 'yes'):
        state.reload()

    search_query = request.args.get('search', '')
    status_filter = request.args.get('status', 'all') or 'all'
    memes = state.collection.search(search_query, status_filter)
    selected = state.collection.selected

    resp = jsonify({
        'success': True,
        'memes': memes,
        'count': len(memes),
        'total': len(state.collection),
        'statuses': state.collection.statuses(),
        'selected_id': selected['id'] if selected else None,
    })
    resp.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
    return resp

@app.route('/api/memes/<int:meme_id>', methods=['GET'])
def get_meme(meme_id: int):
    """Select a meme and return it with its neighbours for navigation"""
    state = get_state()
    meme = state.collection.select(meme_id)
    if meme is None:
        meme = state.store.get_meme(meme_id)
        if meme is None:
            return meme_not_found(meme_id)
        state.collection.add(meme)
        state.collection.select(meme_id)

    prev_id, next_id = state.collection.neighbours(meme_id)
    resp = jsonify({'success': True, 'meme': meme, 'prev_id': prev_id, 'next_id': next_id})
    resp.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
    return resp

@app.route('/api/memes/jump', methods=['GET'])
def jump_to_meme():
    """Select the meme at a 1-based position of the filtered list"""
    state = get_state()
    position = parse_meme_id(request.args.get('index'))
    if position is None:
        return jsonify({'success': False, 'error': 'Invalid index'}), 400

    meme = state.collection.at_position(position, request.args.get('search', ''),
                                        request.args.get('status', 'all'))
    if meme is None:
        return jsonify({'success': False, 'error': f'No meme at position {position}'}), 404
    state.collection.select(meme['id'])
    return jsonify({'success': True, 'meme': meme, 'position': position})

@app.route('/api/memes/update-ocr', methods=['POST'])
def update_ocr():
    """Update OCR text of a meme"""
    data = request.get_json(silent=True) or {}
    meme_id = parse_meme_id(data.get('memeId'))
    if meme_id is None:
        return jsonify({'success': False, 'error': 'memeId is required'}), 400
    state = get_state()
    if find_meme(state, meme_id) is None:
        return meme_not_found(meme_id)
    return notice_response(state.controller.update_ocr_text(meme_id, data.get('ocrText', '')))

@app.route('/api/memes/update-context', methods=['POST'])
def update_context():
    """Update context of a fully annotated meme"""
    data = request.get_json(silent=True) or {}
    meme_id = parse_meme_id(data.get('memeId'))
    if meme_id is None:
        return jsonify({'success': False, 'error': 'memeId is required'}), 400
    state = get_state()
    if find_meme(state, meme_id) is None:
        return meme_not_found(meme_id)
    return notice_response(state.controller.update_context(meme_id, data.get('context', '')))

@app.route('/api/memes/update-explanation', methods=['POST'])
def update_explanation():
    """Update explanation of a meme"""
    data = request.get_json(silent=True) or {}
    meme_id = parse_meme_id(data.get('memeId'))
    if meme_id is None:
        return jsonify({'success': False, 'error': 'memeId is required'}), 400
    state = get_state()
    if find_meme(state, meme_id) is None:
        return meme_not_found(meme_id)
    return notice_response(state.controller.update_explanation(meme_id, data.get('explanation', '')))

@app.route('/api/memes/<int:meme_id>/roles/<kind>', methods=['POST', 'DELETE'])
def edit_role(meme_id: int, kind: str):
    """Add (POST) or remove (DELETE) a hero/villain/victim/other role"""
    if kind not in ROLE_KINDS:
        return jsonify({'success': False, 'error': f'Unknown role kind: {kind}'}), 404
    data = request.get_json(silent=True) or {}
    state = get_state()
    if find_meme(state, meme_id) is None:
        return meme_not_found(meme_id)

    value = data.get('value', '')
    if request.method == 'POST':
        return notice_response(state.controller.add_role(meme_id, kind, value))
    return notice_response(state.controller.remove_role(meme_id, kind, value))

@app.route('/api/memes/<int:meme_id>/annotate', methods=['POST'])
def annotate_meme(meme_id: int):
    """Generate annotation for a single meme via the Annotation Service"""
    state = get_state()
    if find_meme(state, meme_id) is None:
        return meme_not_found(meme_id)
    return notice_response(state.controller.generate_annotation(meme_id))

@app.route('/api/memes/<int:meme_id>/generate-context', methods=['POST'])
def generate_context(meme_id: int):
    """Generate context for a single meme via the Annotation Service"""
    state = get_state()
    if find_meme(state, meme_id) is None:
        return meme_not_found(meme_id)
    return notice_response(state.controller.generate_context(meme_id))

def start_batch(operation):
    """Validate and start a batch operation in the background"""
    state = get_state()

    # Configuration is checked before anything is started
    try:
        client = AnnotationClient.from_config()
    except ConfigurationError as e:
        app.logger.error(f"Batch {operation} not started: {e}")
        return notice_response(Notice.from_error(e))

    if state.batch.is_running():
        return jsonify({
            'success': False,
            'error': f'Another batch operation is already running ({state.batch.active})',
        }), 409

    total = len(state.collection.with_status(batch_scope_status(operation)))
    if total == 0:
        return notice_response(Notice(Notice.INFO, NOTHING_TO_DO[operation], total=0))

    if state.batch.start(operation, client=client) is None:
        return jsonify({'success': False, 'error': 'Another batch operation is already running'}), 409
    app.logger.info(f"Batch {operation} started for {total} meme(s)")
    return jsonify({'success': True, 'message': 'Batch started', 'operation': operation, 'total': total}), 202

@app.route('/api/batch/annotate-all', methods=['POST'])
def batch_annotate_all():
    """Annotate every meme with status 'uploaded'"""
    return start_batch(ANNOTATE)

@app.route('/api/batch/generate-context-all', methods=['POST'])
def batch_generate_context_all():
    """Generate context for every meme with status 'half_annotated'"""
    return start_batch(GENERATE_CONTEXT)

@app.route('/api/batch/status', methods=['GET'])
def batch_status():
    """Progress of the running batch and the last batch report"""
    status = get_state().batch.status()
    status['success'] = True
    resp = jsonify(status)
    resp.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
    return resp

@app.route('/api/stats', methods=['GET'])
def stats():
    """Counts of memes by annotation status"""
    counts = get_state().store.status_counts()
    by_status = {status: counts.get(status, 0) for status in STATUSES}
    by_status.update({k: v for k, v in counts.items() if k not in by_status})
    return jsonify({'success': True, 'total': sum(counts.values()), 'by_status': by_status})

def get_unique_filename(directory, filename):
    """Get a unique filename by appending numbers if file exists"""
    file_path = Path(directory) / filename
    if not file_path.exists():
        return filename

    name_stem = file_path.stem
    extension = file_path.suffix
    counter = 1

    while True:
        new_filename = f"{name_stem}_{counter}{extension}"
        new_path = Path(directory) / new_filename
        if not new_path.exists():
            return new_filename
        counter += 1

def check_upload_file(file, content):
    """Return an error message if the upload is not an acceptable image, else None"""
    max_size_mb = get_max_upload_size_mb()
    ext = Path(file.filename).suffix.lower()
    if file.mimetype not in ACCEPTED_FILE_TYPES or ext not in IMAGE_EXTENSIONS:
        return 'Invalid file type'
    if len(content) > max_size_mb * 1024 * 1024:
        return f'File size exceeds {max_size_mb:g}MB'
    try:
        with Image.open(io.BytesIO(content)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        return f'Not a valid image: {e}'
    return None

@app.route('/api/upload', methods=['POST'])
def upload_files():
    """Handle meme image uploads; every new meme starts as 'uploaded'"""
    files = [f for f in request.files.getlist('files') if f and f.filename]
    if not files:
        return jsonify({'success': False, 'error': 'Please select at least one file to upload'}), 400

    max_files = get_max_upload_files()
    if len(files) > max_files:
        return jsonify({
            'success': False,
            'error': f'Cannot upload more than {max_files} files. You selected {len(files)} files.'
        }), 400

    state = get_state()
    memes_dir = Path(get_memes_dir())
    memes_dir.mkdir(parents=True, exist_ok=True)
    url_base = get_memes_url_base()

    results = []
    for file in files:
        content = file.read()
        error = check_upload_file(file, content)
        if error:
            app.logger.warning(f"Upload rejected: {file.filename}: {error}")
            results.append({'filename': file.filename, 'status': 'error', 'error': error})
            continue

        file_hash = hashlib.sha256(content).hexdigest()
        try:
            duplicate_id = state.store.find_by_hash(file_hash)
            if duplicate_id is not None:
                results.append({
                    'filename': file.filename,
                    'status': 'skipped',
                    'message': f'Duplicate of meme {duplicate_id}',
                })
                continue

            unique_filename = get_unique_filename(memes_dir, secure_filename(file.filename) or 'meme')
            file_path = memes_dir / unique_filename
            file_path.write_bytes(content)
            meme_id = state.store.insert_meme(file.filename, str(file_path.resolve()), file_hash,
                                              url_base + unique_filename)
        except (StoreError, OSError) as e:
            app.logger.error(f"Upload failed for {file.filename}: {e}")
            results.append({'filename': file.filename, 'status': 'error', 'error': str(e)})
            continue

        state.collection.add(state.store.get_meme(meme_id))
        app.logger.info(f"Uploaded {file.filename} as meme {meme_id}")
        results.append({'filename': file.filename, 'status': 'success', 'message': 'uploaded',
                        'meme_id': meme_id})

    successful = [r for r in results if r['status'] == 'success']
    failed = [r for r in results if r['status'] == 'error']
    skipped = [r for r in results if r['status'] == 'skipped']

    return jsonify({
        'success': True,
        'total_files': len(results),
        'successful_uploads': len(successful),
        'failed_uploads': len(failed),
        'skipped_uploads': len(skipped),
        'results': results,
        'summary': {
            'success_rate': f"{len(successful) / len(results) * 100:.1f}%",
            'successful_files': [{'filename': r['filename'], 'action': 'uploaded'} for r in successful],
            'failed_files': [{'filename': r['filename'], 'error': r['error']} for r in failed],
            'skipped_files': [{'filename': r['filename'], 'message': r['message']} for r in skipped],
        },
    })

if __name__ == '__main__':
    configure_logging()
    app.run(host=get_host(), port=get_port(), debug=False)
