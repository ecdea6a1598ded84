# FILE: regalpaket/services/manifest_store.py
"""
Manifest parsing, validation and serialization
"""
import json
import logging
from typing import Callable, Mapping

from pydantic import ValidationError

from regalpaket.errors import MalformedError, StructuralError, UnsupportedVersionError
from regalpaket.models.manifests import FORMAT_VERSION, Manifest
from regalpaket.services.layout import MANIFEST_ENTRY, PAGES_PREFIX, annotation_page_number

logger = logging.getLogger(__name__)


def parse_manifest(payload: bytes) -> Manifest:
    """Decode manifest bytes; the version is checked before anything else"""
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedError(f"Manifest is not valid JSON: {e}") from e
    
    if not isinstance(data, dict):
        raise MalformedError("Manifest must be a JSON object")
    
    version = data.get("version")
    if version != FORMAT_VERSION or isinstance(version, bool):
        raise UnsupportedVersionError(version)
    
    # Strict: "pageCount": "3" is a mistyped field, not a page count
    try:
        return Manifest.model_validate_json(payload, strict=True)
    except ValidationError as e:
        raise MalformedError(f"Manifest is invalid: {e}") from e


def serialize_manifest(manifest: Manifest) -> bytes:
    """Encode manifest to its stored form"""
    data = manifest.model_dump(mode="json", by_alias=True)
    return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")


def validate_manifest(manifest: Manifest, entries: Mapping[str, int]):
    """
    Check the manifest against the live archive.

    Args:
        manifest: Parsed manifest
        entries: Live entry name -> size in bytes

    Raises:
        StructuralError: On the first invariant violation found
    """
    page_count = manifest.page_count
    if page_count < 1:
        raise StructuralError(f"pageCount must be positive, got {page_count}")
    
    if len(manifest.page_index) != page_count:
        raise StructuralError(
            f"pageCount is {page_count} but the page index lists {len(manifest.page_index)} pages"
        )
    
    seen_images = set()
    for expected, ref in enumerate(manifest.page_index, start=1):
        if ref.page_number != expected:
            raise StructuralError(
                f"Page index is not contiguous: expected page {expected}, found {ref.page_number}"
            )
        if ref.image_entry_name in seen_images:
            raise StructuralError(f"Image entry {ref.image_entry_name} referenced twice")
        seen_images.add(ref.image_entry_name)
        if ref.image_entry_name not in entries:
            raise StructuralError(
                f"Page {expected} references missing entry {ref.image_entry_name}"
            )
    
    stray = sorted(
        name for name in entries
        if name.startswith(PAGES_PREFIX) and name not in seen_images
    )
    if stray:
        raise StructuralError(
            f"pageCount is {page_count} but the archive holds "
            f"{page_count + len(stray)} page images (unreferenced: {', '.join(stray)})"
        )
    
    for name in entries:
        page = annotation_page_number(name)
        if page is not None and not 1 <= page <= page_count:
            raise StructuralError(
                f"Annotation entry {name} is outside pages 1..{page_count}"
            )
    
    original = manifest.original_entry_name
    if original not in entries:
        raise StructuralError(f"Original document entry {original} is missing")
    if entries[original] <= 0:
        raise StructuralError(f"Original document entry {original} is empty")


def check_container_entries(
    sizes: Mapping[str, int],
    read: Callable[[str], bytes]
) -> Manifest:
    """Parse and validate the manifest of a complete entry set"""
    if MANIFEST_ENTRY not in sizes:
        raise StructuralError(f"Manifest entry {MANIFEST_ENTRY} is missing")
    manifest = parse_manifest(read(MANIFEST_ENTRY))
    validate_manifest(manifest, sizes)
    return manifest
