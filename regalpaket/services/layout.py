# FILE: regalpaket/services/layout.py
"""
Entry naming inside a container archive
"""
import re
from typing import Optional

MANIFEST_ENTRY = "manifest.json"
ORIGINAL_ENTRY = "original.pdf"
PAGES_PREFIX = "pages/"
ANNOTATIONS_PREFIX = "annotations/"

_ANNOTATION_RE = re.compile(r"^annotations/page-(\d+)\.json$")


def page_entry_name(page_number: int, ext: str = "png") -> str:
    return f"{PAGES_PREFIX}page-{page_number}.{ext}"


def annotation_entry_name(page_number: int) -> str:
    return f"{ANNOTATIONS_PREFIX}page-{page_number}.json"


def annotation_page_number(entry_name: str) -> Optional[int]:
    """Page number of an annotation entry, or None if the name is not one"""
    match = _ANNOTATION_RE.match(entry_name)
    if not match:
        return None
    return int(match.group(1))


def is_annotation_entry(entry_name: str) -> bool:
    return annotation_page_number(entry_name) is not None
