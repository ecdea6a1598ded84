# FILE: regalpaket/routes/packages.py
"""
Package (container) endpoints
"""
import json
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from regalpaket.config import get_settings
from regalpaket.errors import PayloadTooLargeError
from regalpaket.services import stroke_codec
from regalpaket.services.package_service import PackageService

logger = logging.getLogger(__name__)
router = APIRouter()

PAGE_CACHE_CONTROL = "public, max-age=31536000"


class AnnotationsUpdate(BaseModel):
    """Replace one page's annotations"""
    strokes: List[Dict[str, Any]] = []


def get_package_service(request: Request) -> PackageService:
    return request.app.state.package_service


def resolve_container_path(name: str) -> Path:
    """Map a package name to its file inside the library"""
    settings = get_settings()
    name = name.strip()
    if not name or name.startswith(".") or "/" in name or "\\" in name:
        raise HTTPException(status_code=400, detail="Invalid package name")
    if not name.lower().endswith(settings.package_extension):
        name = f"{name}{settings.package_extension}"
    return Path(settings.library_path) / name


def _parse_prior_annotations(raw: Optional[str]) -> Dict[int, list]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="annotations must be a JSON object")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="annotations must be a JSON object")

    prior = {}
    for key, records in data.items():
        try:
            page_number = int(key)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid page number: {key}")
        prior[page_number] = stroke_codec.decode_records(records, strict_points=False)
    return prior


@router.post("")
def create_package(
    original: UploadFile = File(...),
    pages: List[UploadFile] = File(...),
    title: str = Form(...),
    name: Optional[str] = Form(None),
    annotations: Optional[str] = Form(None),
    overwrite: bool = Form(False),
    service: PackageService = Depends(get_package_service)
):
    """Create a container from an original document and its rendered pages"""
    target = resolve_container_path(name or title)
    logger.info(f"Create package {target.name}: {len(pages)} pages")

    original_bytes = original.file.read()
    page_bytes = [page.file.read() for page in pages]

    # Chunked uploads carry no Content-Length for the middleware to check
    limit = get_settings().upload_limit_mb * 1024 * 1024
    received = len(original_bytes) + sum(len(p) for p in page_bytes)
    if received > limit:
        raise PayloadTooLargeError(received, limit)

    manifest = service.create_container(
        original=original_bytes,
        rendered_pages=page_bytes,
        prior_annotations=_parse_prior_annotations(annotations),
        title=title,
        target_path=target,
        overwrite=overwrite
    )

    return {
        "success": True,
        "name": target.name,
        "pageCount": manifest.page_count
    }


@router.get("/{name}/manifest")
def get_manifest(name: str, service: PackageService = Depends(get_package_service)):
    """Get container manifest"""
    manifest = service.open_manifest(resolve_container_path(name))
    return manifest.model_dump(mode="json", by_alias=True)


@router.get("/{name}/pages/{page_number}")
def get_page_image(
    name: str,
    page_number: int,
    service: PackageService = Depends(get_package_service)
):
    """Get one rendered page"""
    entry_name, image = service.read_page_image_with_name(resolve_container_path(name), page_number)
    media_type = mimetypes.guess_type(entry_name)[0] or "application/octet-stream"
    return Response(
        content=image,
        media_type=media_type,
        headers={"Cache-Control": PAGE_CACHE_CONTROL}
    )


@router.get("/{name}/annotations")
def get_all_annotations(name: str, service: PackageService = Depends(get_package_service)):
    """Get every non-empty overlay keyed by page number"""
    overlays = service.read_all_annotations(resolve_container_path(name))
    return {
        str(page_number): stroke_codec.to_records(overlay)
        for page_number, overlay in overlays.items()
    }


@router.get("/{name}/annotations/{page_number}")
def get_page_annotations(
    name: str,
    page_number: int,
    service: PackageService = Depends(get_package_service)
):
    """Get one page's overlay (empty list when the page has none)"""
    overlay = service.read_page_annotations(resolve_container_path(name), page_number)
    return stroke_codec.to_records(overlay)


@router.put("/{name}/annotations/{page_number}")
def put_page_annotations(
    name: str,
    page_number: int,
    request: AnnotationsUpdate,
    service: PackageService = Depends(get_package_service)
):
    """Replace one page's overlay"""
    overlay = stroke_codec.decode_records(request.strokes, strict_points=False)
    service.write_page_annotations(resolve_container_path(name), page_number, overlay)
    return {"success": True}


@router.get("/{name}/has-annotations")
def has_annotations(name: str, service: PackageService = Depends(get_package_service)):
    """Check whether any page carries annotations"""
    return {"hasAnnotations": service.has_any_annotations(resolve_container_path(name))}


@router.get("/{name}/original")
def get_original(name: str, service: PackageService = Depends(get_package_service)):
    """Export the embedded source document"""
    target = resolve_container_path(name)
    content = service.export_original(target)
    filename = f"{target.stem}.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
