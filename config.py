#!/usr/bin/env python3
"""
Configuration loader for Meme Annotator.

Priority:
1. Flask app.config (when running inside the web app or a wrapper)
2. Environment variables (for standalone / CLI use)
3. Defaults
"""
import os
from pathlib import Path
from flask import current_app, has_app_context
from dotenv import load_dotenv

# Load .env file if it exists (for standalone installations)
env_path = Path(__file__).parent / '.env'
if env_path.exists():
    load_dotenv(env_path)

def get_config_value(key, default=None, fallback_keys=None):
    """
    Get config value from app.config (if available) or environment variables

    Args:
        key: Primary config key to look for
        default: Default value if not found
        fallback_keys: List of alternative keys to try if primary key not found
    """
    keys = [key] + list(fallback_keys or [])

    # Check Flask app.config first
    if has_app_context():
        for candidate in keys:
            value = current_app.config.get(candidate)
            if value is not None:
                return value

    # Fall back to environment variables
    for candidate in keys:
        value = os.environ.get(candidate)
        if value is not None:
            return value

    return default

def get_install_dir():
    """Get installation directory (where this script is located)"""
    return Path(__file__).parent.resolve()

def get_annotation_api_url():
    """Get base URL of the Annotation Service, or None when not configured"""
    value = get_config_value('ANNOTATION_API_URL', None, ['API_URL', 'NEXT_PUBLIC_API_URL'])
    if value is None:
        return None
    value = str(value).strip().rstrip('/')
    return value or None

def get_annotation_timeout():
    """Get HTTP timeout (seconds) for Annotation Service calls"""
    return float(get_config_value('ANNOTATION_TIMEOUT', '300'))

def get_memes_dir():
    """Get directory where uploaded meme files are stored"""
    return get_config_value('MEMES_DIR', str(get_install_dir() / 'files'), ['FILES_PATH'])

def get_db_path():
    """Get path to SQLite database file"""
    return get_config_value('DB_PATH', str(get_install_dir() / 'annotator.db'))

def get_log_dir():
    """Get directory for log files"""
    return get_config_value('LOG_DIR', str(get_install_dir() / 'logs'))

def get_base_url():
    """Get base URL for this instance"""
    return get_config_value('BASE_URL', 'http://localhost:5000')

def get_memes_url_base():
    """Get base URL for serving meme files"""
    url_base = get_config_value('MEMES_URL_BASE', f'{get_base_url()}/files/')
    return url_base if url_base.endswith('/') else url_base + '/'

def get_host():
    """Get host to bind Flask server to"""
    return get_config_value('HOST', '127.0.0.1')

def get_port():
    """Get port to bind Flask server to"""
    return int(get_config_value('PORT', '5000'))

def get_max_upload_files():
    """Get maximum number of files accepted in one upload request"""
    return int(get_config_value('MAX_UPLOAD_FILES', '2500'))

def get_max_upload_size_mb():
    """Get per-file upload size limit in megabytes"""
    return float(get_config_value('MAX_UPLOAD_SIZE_MB', '10'))
