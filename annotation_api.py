"""
Client for the external Annotation Service.

The service infers roles, sentiment, genre and explanation for a meme image
(`/annotation/annotate`) and writes a contextual narrative
(`/annotation/generate-context`).
"""
import logging
import requests

from config import get_annotation_api_url, get_annotation_timeout

logger = logging.getLogger(__name__)

ANNOTATE_PATH = '/annotation/annotate'
GENERATE_CONTEXT_PATH = '/annotation/generate-context'

class ConfigurationError(Exception):
    """Raised when the Annotation Service base URL is not configured."""

class AnnotationServiceError(Exception):
    """Raised when the Annotation Service call fails or returns non-2xx."""

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

def _error_message(response):
    """Best-effort extraction of the service's error message."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ('message', 'detail', 'error'):
            if data.get(key):
                return str(data[key])
    text = (response.text or '').strip()
    if text:
        return text[:500]
    return f"HTTP {response.status_code} {response.reason or ''}".strip()

class AnnotationClient:
    """Thin requests-based wrapper around the Annotation Service."""

    def __init__(self, base_url, timeout=300):
        if not base_url:
            raise ConfigurationError("API URL is not defined in environment variables")
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    @classmethod
    def from_config(cls):
        """Build a client from configuration; raises ConfigurationError if the URL is missing."""
        return cls(get_annotation_api_url(), timeout=get_annotation_timeout())

    def annotate(self, meme_id, meme_url):
        """Request inferred annotation fields for one meme."""
        return self._post(ANNOTATE_PATH, {'meme_id': meme_id, 'meme_url': meme_url})

    def generate_context(self, meme_id, meme_url):
        """Request the contextual narrative for one meme."""
        return self._post(GENERATE_CONTEXT_PATH, {'meme_id': meme_id, 'meme_url': meme_url})

    def _post(self, path, payload):
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise AnnotationServiceError(f"Request to {path} failed: {e}") from e

        if not response.ok:
            message = _error_message(response)
            logger.error("Annotation service %s returned %s: %s", path, response.status_code, message)
            raise AnnotationServiceError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise AnnotationServiceError(f"Invalid JSON from {path}", status_code=response.status_code) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise AnnotationServiceError(f"Unexpected response from {path}", status_code=response.status_code,
                                         payload=data)
        return data
