"""Validation and display helpers for remote database URLs."""

import ipaddress
import re
from typing import Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

ALLOWED_REMOTE_SCHEMES = ("https", "s3", "gcs", "gs", "azure", "az")

_CLOUD_LABELS = {
    "s3": "S3",
    "gcs": "GCS",
    "gs": "GCS",
    "azure": "Azure",
    "az": "Azure",
}

_WINDOWS_DRIVE = re.compile(r"^[a-zA-Z]:[\\/]")


def _is_private_host(hostname: str) -> bool:
    if hostname in ("localhost", "localhost.localdomain"):
        return True
    try:
        address = ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def validate_remote_url(url: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Validate a remote database URL.

    Args:
        url: URL entered by the user

    Returns:
        ``(True, None)`` when valid, otherwise ``(False, reason)``
    """
    if not url or not isinstance(url, str) or not url.strip():
        return False, "URL must be a non-empty string"

    url = url.strip()
    if ".." in url or "\\" in url:
        return False, "URL contains invalid path characters"

    if url.startswith("file://") or url.startswith("/") or _WINDOWS_DRIVE.match(url):
        return False, "Local file paths are not allowed for remote databases"

    try:
        parsed = urlsplit(url)
    except ValueError:
        return False, "Invalid URL format"

    scheme = parsed.scheme.lower()
    if not scheme:
        return False, "Invalid URL format"
    if scheme not in ALLOWED_REMOTE_SCHEMES:
        return False, (
            f'Scheme "{scheme}" is not allowed. Allowed schemes: '
            f"{', '.join(ALLOWED_REMOTE_SCHEMES)}"
        )

    if scheme == "https":
        if not parsed.hostname:
            return False, "HTTPS URLs must have a valid hostname"
        if _is_private_host(parsed.hostname):
            return False, "Private/local network addresses are not allowed"
        return True, None

    # Cloud storage: netloc is the bucket/container, a path must follow
    if not parsed.netloc or parsed.path.strip("/") == "":
        noun = "container" if _CLOUD_LABELS[scheme] == "Azure" else "bucket"
        return False, f"{_CLOUD_LABELS[scheme]} URLs must include a {noun} and path"

    return True, None


def sanitize_remote_url(url: str) -> str:
    """Normalize a remote URL and strip embedded credentials.

    Raises:
        ValueError: If the URL does not pass :func:`validate_remote_url`
    """
    valid, reason = validate_remote_url(url)
    if not valid:
        raise ValueError(f"Invalid remote database URL: {reason}")

    parsed = urlsplit(url.strip())
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"

    path = parsed.path
    if parsed.scheme.lower() == "https":
        path = re.sub(r"/+", "/", path)

    return urlunsplit((parsed.scheme.lower(), netloc, path, parsed.query, ""))


def remote_display_name(url: str) -> str:
    """Short, user-facing label for a remote URL."""
    valid, _ = validate_remote_url(url)
    if not valid:
        return url if len(url) <= 50 else f"{url[:47]}..."

    parsed = urlsplit(url.strip())
    scheme = parsed.scheme.lower()
    if scheme == "https":
        return parsed.hostname or url
    return f"{_CLOUD_LABELS[scheme]}: {parsed.hostname or parsed.netloc}"


def url_scheme(url: str) -> str:
    """Lower-cased scheme of ``url`` (empty string when absent)."""
    return urlsplit(url.strip()).scheme.lower()
