"""URL helpers shared by the catalog and relay layers."""
import hashlib
from urllib.parse import urlparse


def sanitize_url_for_logging(url: str) -> str:
    """Create a safe version of URL for logging (hide query params)."""
    try:
        parsed = urlparse(url)
        url_hash = hashlib.sha256(url.encode()).hexdigest()[:8]
        return f"{parsed.scheme}://{parsed.hostname}{parsed.path} (hash:{url_hash})"
    except Exception:
        return "invalid-url"
