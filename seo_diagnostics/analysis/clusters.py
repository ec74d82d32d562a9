"""URL path to page-cluster mapping.

Every path maps to exactly one cluster label: the first matching fixed
pattern, else ``/<first-segment>/*``, else ``/other``.
"""

from __future__ import annotations

import re
from typing import List, Tuple
from urllib.parse import urlsplit

CLUSTER_PATTERNS: List[Tuple[re.Pattern[str], str]] = [
    (re.compile(r"^/services/"), "/services/*"),
    (re.compile(r"^/locations/"), "/locations/*"),
    (re.compile(r"^/conditions/"), "/conditions/*"),
    (re.compile(r"^/blog/"), "/blog/*"),
    (re.compile(r"^/providers/"), "/providers/*"),
    (re.compile(r"^/treatments/"), "/treatments/*"),
    (re.compile(r"^/$"), "/"),
]

OTHER_CLUSTER = "/other"


def get_page_cluster(page_path: str) -> str:
    """Return the cluster label for a URL path (e.g. ``/blog/x`` -> ``/blog/*``)."""
    for pattern, cluster in CLUSTER_PATTERNS:
        if pattern.search(page_path):
            return cluster
    segments = page_path.split("/")
    first_segment = segments[1] if len(segments) > 1 else ""
    return f"/{first_segment}/*" if first_segment else OTHER_CLUSTER


def extract_path(url: str) -> str:
    """Reduce a full page URL to its path; bare paths get a leading slash."""
    parts = urlsplit(url)
    if parts.scheme and parts.netloc:
        return parts.path or "/"
    return url if url.startswith("/") else f"/{url}"
