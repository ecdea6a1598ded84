# FILE: regalpaket/services/stroke_codec.py
"""
Annotation overlay codec

Overlays are stored as a JSON array of stroke/stamp records in paint order.
Decoding fails closed: unknown tools or stamps raise UnknownVariantError
instead of being dropped.
"""
import json
import logging
from typing import Any, List

from pydantic import ValidationError

from regalpaket.errors import MalformedError, UnknownVariantError
from regalpaket.models.annotations import (
    AnnotationOverlay, Stamp, StampId, Stroke, StrokeTool
)

logger = logging.getLogger(__name__)

STAMP_TOOL = "stamp"
MIN_STROKE_POINTS = 2

_STROKE_TOOLS = {t.value for t in StrokeTool}
_STAMP_IDS = {s.value for s in StampId}


def normalize_overlay(overlay: AnnotationOverlay) -> AnnotationOverlay:
    """Drop strokes too short to persist (single-point taps)"""
    kept = []
    for record in overlay:
        if isinstance(record, Stroke) and len(record.points) < MIN_STROKE_POINTS:
            logger.debug(f"Dropping {record.tool.value} stroke with {len(record.points)} point(s)")
            continue
        kept.append(record)
    return kept


def encode(overlay: AnnotationOverlay) -> bytes:
    """Serialize an overlay to its stored form"""
    records = [
        record.model_dump(mode="json", by_alias=True)
        for record in normalize_overlay(overlay)
    ]
    return json.dumps(records, separators=(",", ":")).encode("utf-8")


def decode(payload: bytes) -> AnnotationOverlay:
    """
    Deserialize a stored overlay.

    An empty payload and an empty JSON array both yield the canonical
    empty overlay.
    """
    if not payload.strip():
        return []
    
    try:
        records = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedError(f"Annotation payload is not valid JSON: {e}") from e
    
    return decode_records(records)


def decode_records(records: Any, strict_points: bool = True) -> AnnotationOverlay:
    """
    Build an overlay from already-parsed JSON records.

    Stored payloads are read with ``strict_points``; incoming edits pass
    False so short strokes reach ``normalize_overlay`` and are dropped there.
    """
    if not isinstance(records, list):
        raise MalformedError("Annotation payload must be a list of records")
    
    return [_decode_record(record, idx, strict_points) for idx, record in enumerate(records)]


def _decode_record(record: Any, idx: int, strict_points: bool = True):
    if not isinstance(record, dict):
        raise MalformedError(f"Annotation record {idx} is not an object")
    
    tool = record.get("tool")
    if tool == STAMP_TOOL:
        stamp_id = record.get("stampId")
        if stamp_id not in _STAMP_IDS:
            raise UnknownVariantError("stamp", stamp_id)
        model = Stamp
    elif tool in _STROKE_TOOLS:
        model = Stroke
    else:
        raise UnknownVariantError("tool", tool)
    
    try:
        decoded = model.model_validate(record)
    except ValidationError as e:
        raise MalformedError(f"Annotation record {idx} is invalid: {e}") from e
    
    if strict_points and isinstance(decoded, Stroke) and len(decoded.points) < MIN_STROKE_POINTS:
        raise MalformedError(
            f"Annotation record {idx} has {len(decoded.points)} point(s); "
            f"strokes need at least {MIN_STROKE_POINTS}"
        )
    return decoded


def to_records(overlay: AnnotationOverlay) -> List[dict]:
    """JSON-ready records for API responses"""
    return [record.model_dump(mode="json", by_alias=True) for record in overlay]
