from urllib.parse import urlparse, urlunparse
from typing import Tuple

DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str) -> Tuple[str, bool]:
    """
    Canonical form used for storage and de-duplication: scheme defaults to
    https, host lower-cased, default port and non-root trailing slash dropped.
    Returns (normalized, was_modified).
    """
    original = url
    url = url.strip()

    if "://" not in url:
        url = f"https://{url}"
    parsed = urlparse(url)

    scheme = parsed.scheme.lower()
    hostname = (parsed.hostname or "").lower()
    if ":" in hostname:
        hostname = f"[{hostname}]"

    netloc = hostname
    if parsed.port and parsed.port != DEFAULT_PORTS.get(scheme):
        netloc = f"{hostname}:{parsed.port}"

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")

    normalized = urlunparse((scheme, netloc, path, parsed.params, parsed.query, ""))
    return normalized, normalized != original


def validate_url(url: str) -> Tuple[bool, str, str]:
    if not url or not url.strip():
        return False, "", "URL cannot be empty"

    raw = url.strip()
    if "://" not in raw:
        raw = f"https://{raw}"

    try:
        parsed = urlparse(raw)
        normalized_url, _ = normalize_url(url)
    except ValueError as e:
        return False, url, f"URL parsing error: {str(e)}"

    if parsed.scheme.lower() not in ['http', 'https']:
        return False, normalized_url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"

    if not parsed.hostname:
        return False, normalized_url, "Invalid URL format: missing domain"

    if parsed.username or parsed.password:
        return False, normalized_url, "URLs with credentials are not allowed"

    return True, normalized_url, ""
