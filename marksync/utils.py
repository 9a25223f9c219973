import hashlib
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

SECRET_FIELDS = ("credential",)


def generate_unique_id() -> str:
    """Generate a short random identifier for a sync request."""
    # let's truncate to 9 characters for brevity
    return hashlib.sha256(os.urandom(16)).hexdigest()[:9]


def parse_version(version: str) -> Tuple[int, ...]:
    """
    Parse a dotted version string into a tuple of integers.

    Pre-release and build suffixes are ignored, missing parts count as 0.

    Examples:
        "1.5.2" -> (1, 5, 2)
        "v2.0.0-beta.1" -> (2, 0, 0)
    """
    core = re.split(r"[-+]", version.strip().lstrip("vV"), maxsplit=1)[0]
    parts = []
    for piece in core.split(".")[:3]:
        match = re.match(r"\d+", piece)
        parts.append(int(match.group()) if match else 0)
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


def compare_versions(left: str, right: str) -> int:
    """Return 1 if left is newer than right, -1 if older, 0 if equal."""
    a, b = parse_version(left), parse_version(right)
    return (a > b) - (a < b)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (trailing 'Z' allowed) into an aware datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def strip_secrets(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a copy of a sync info dict without credential material."""
    return {k: v for k, v in (data or {}).items() if k not in SECRET_FIELDS}
