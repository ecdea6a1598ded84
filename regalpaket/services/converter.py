# FILE: regalpaket/services/converter.py
"""
Document -> container conversion

Takes the source document, its rendered page images (in authoritative
order) and any annotations that existed before conversion, and writes a new
container in a single commit. Nothing appears at the target path unless
the whole conversion succeeds.
"""
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence, Union

from PIL import Image

from regalpaket.errors import (
    ConversionError, EmptyDocumentError, PackageError, PageRenderError, TargetExistsError
)
from regalpaket.models.annotations import AnnotationOverlay
from regalpaket.models.manifests import FORMAT_VERSION, Manifest, PageRef
from regalpaket.services import stroke_codec
from regalpaket.services.archive_store import ArchiveStore
from regalpaket.services.layout import (
    MANIFEST_ENTRY, ORIGINAL_ENTRY, annotation_entry_name, annotation_page_number, page_entry_name
)
from regalpaket.services.manifest_store import (
    check_container_entries, serialize_manifest, validate_manifest
)

logger = logging.getLogger(__name__)

# External renderer: document bytes -> one image per page, in document order
PageRenderer = Callable[[bytes], Sequence[bytes]]

_IMAGE_EXTENSIONS = {
    "PNG": "png",
    "JPEG": "jpg",
    "WEBP": "webp",
    "TIFF": "tiff",
    "GIF": "gif",
    "BMP": "bmp",
}


@dataclass
class ContainerBuild:
    """Complete entry set of a container about to be written"""
    manifest: Manifest
    entries: Dict[str, bytes]


@dataclass
class UnpackedContainer:
    """Everything needed to reverse a conversion"""
    title: str
    original: bytes
    annotations: Dict[int, AnnotationOverlay] = field(default_factory=dict)


def inspect_page_image(data: bytes, page_number: int) -> str:
    """Verify a rendered page and return the file extension for its format"""
    if not data:
        raise PageRenderError(page_number, "image is empty")
    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except Exception as e:
        raise PageRenderError(page_number, f"image is not decodable ({e})") from e
    if not image_format:
        raise PageRenderError(page_number, "image format not recognised")
    return _IMAGE_EXTENSIONS.get(image_format, image_format.lower())


class Converter:
    """Builds containers from rendered documents"""

    def __init__(self, store: ArchiveStore):
        self.store = store

    def build_entries(
        self,
        original: bytes,
        rendered_pages: Sequence[bytes],
        prior_annotations: Optional[Mapping[int, AnnotationOverlay]] = None,
        title: str = "",
        created_at: Optional[datetime] = None
    ) -> ContainerBuild:
        """Validate inputs and assemble the full entry set (no I/O)"""
        if not rendered_pages:
            raise EmptyDocumentError()
        if not original:
            raise ConversionError("Original document is empty")
        if not title.strip():
            raise ConversionError("Title is required")

        page_count = len(rendered_pages)
        entries: Dict[str, bytes] = {}
        page_index = []

        # Render order is authoritative; pages are numbered as given
        for page_number, image in enumerate(rendered_pages, start=1):
            ext = inspect_page_image(image, page_number)
            name = page_entry_name(page_number, ext)
            entries[name] = bytes(image)
            page_index.append(PageRef(page_number=page_number, image_entry_name=name))

        for page_number, overlay in sorted((prior_annotations or {}).items()):
            if not 1 <= page_number <= page_count:
                raise ConversionError(
                    f"Annotations given for page {page_number}, document has {page_count} pages"
                )
            overlay = stroke_codec.normalize_overlay(overlay)
            if not overlay:
                continue
            entries[annotation_entry_name(page_number)] = stroke_codec.encode(overlay)

        entries[ORIGINAL_ENTRY] = bytes(original)

        manifest = Manifest(
            format_version=FORMAT_VERSION,
            title=title.strip(),
            created_at=created_at or datetime.now(timezone.utc),
            page_count=page_count,
            original_entry_name=ORIGINAL_ENTRY,
            page_index=page_index
        )
        entries[MANIFEST_ENTRY] = serialize_manifest(manifest)

        validate_manifest(manifest, {name: len(data) for name, data in entries.items()})
        return ContainerBuild(manifest=manifest, entries=entries)

    def convert(
        self,
        original: bytes,
        rendered_pages: Sequence[bytes],
        prior_annotations: Optional[Mapping[int, AnnotationOverlay]],
        title: str,
        target_path: Union[str, Path],
        overwrite: bool = False
    ) -> Manifest:
        """
        Write a new container at ``target_path``.

        Raises:
            EmptyDocumentError: No pages
            PageRenderError: A page image is empty or undecodable
            TargetExistsError: Target exists and ``overwrite`` is False
        """
        target_path = Path(target_path)
        if target_path.exists() and not overwrite:
            raise TargetExistsError(f"{target_path.name} already exists")

        build = self.build_entries(original, rendered_pages, prior_annotations, title)

        # Entries of a replaced container must not leak into the new one
        stale = set()
        if overwrite and target_path.exists():
            stale = self.store.list_entries(target_path) - set(build.entries)

        def precommit(sizes, read):
            if not overwrite and target_path.exists():
                raise TargetExistsError(f"{target_path.name} already exists")
            check_container_entries(sizes, read)

        self.store.replace_entries(target_path, build.entries, stale, precommit=precommit)

        logger.info(
            f"Created container {target_path.name}: {build.manifest.page_count} pages, "
            f"{sum(1 for n in build.entries if annotation_page_number(n) is not None)} annotated"
        )
        return build.manifest

    def convert_with_renderer(
        self,
        original: bytes,
        renderer: PageRenderer,
        prior_annotations: Optional[Mapping[int, AnnotationOverlay]],
        title: str,
        target_path: Union[str, Path],
        overwrite: bool = False
    ) -> Manifest:
        """Render ``original`` with the external renderer, then convert"""
        try:
            pages = list(renderer(original))
        except PackageError:
            raise
        except Exception as e:
            raise ConversionError(f"Rendering failed: {e}") from e
        return self.convert(original, pages, prior_annotations, title, target_path, overwrite)

    def unpack(self, container_path: Union[str, Path]) -> UnpackedContainer:
        """Migrate annotations and the original document back out of a container"""
        with self.store.open(container_path) as handle:
            manifest = check_container_entries(handle.entry_sizes(), handle.read_entry)

            annotations: Dict[int, AnnotationOverlay] = {}
            for name in sorted(handle.list_entries()):
                page_number = annotation_page_number(name)
                if page_number is None:
                    continue
                overlay = stroke_codec.decode(handle.read_entry(name))
                if overlay:
                    annotations[page_number] = overlay

            return UnpackedContainer(
                title=manifest.title,
                original=handle.read_entry(manifest.original_entry_name),
                annotations=annotations
            )
