# FILE: regalpaket/services/package_service.py
"""
Package service: read pages and annotations from a container and write
single-page annotation updates back.

Every call opens the container and re-validates its manifest against the
live entries, so a package damaged outside the service is reported before
any page is served.
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Sequence, Tuple, Union

from regalpaket.errors import PackageError, PageNotFoundError
from regalpaket.models.annotations import AnnotationOverlay
from regalpaket.models.manifests import Manifest
from regalpaket.services import stroke_codec
from regalpaket.services.archive_store import ArchiveHandle, ArchiveStore
from regalpaket.services.converter import Converter
from regalpaket.services.layout import annotation_entry_name, annotation_page_number
from regalpaket.services.manifest_store import check_container_entries

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class PackageService:
    """Facade over container reads/writes"""

    def __init__(self, store: ArchiveStore, converter: Optional[Converter] = None):
        self.store = store
        self.converter = converter or Converter(store)

    @contextmanager
    def _open(self, container_path: PathLike) -> Iterator[Tuple[ArchiveHandle, Manifest]]:
        with self.store.open(container_path) as handle:
            try:
                manifest = check_container_entries(handle.entry_sizes(), handle.read_entry)
            except PackageError as e:
                logger.warning(f"Damaged package {handle.path.name}: {e}")
                raise
            yield handle, manifest

    @staticmethod
    def _check_page(manifest: Manifest, page_number: int):
        if not 1 <= page_number <= manifest.page_count:
            raise PageNotFoundError(page_number, manifest.page_count)

    # ==================== Read ====================

    def open_manifest(self, container_path: PathLike) -> Manifest:
        with self._open(container_path) as (_, manifest):
            return manifest

    def read_page_image(self, container_path: PathLike, page_number: int) -> bytes:
        with self._open(container_path) as (handle, manifest):
            self._check_page(manifest, page_number)
            return handle.read_entry(manifest.image_entry_for(page_number))

    def read_page_image_with_name(self, container_path: PathLike, page_number: int) -> Tuple[str, bytes]:
        """Page image plus its entry name (used to derive the media type)"""
        with self._open(container_path) as (handle, manifest):
            self._check_page(manifest, page_number)
            name = manifest.image_entry_for(page_number)
            return name, handle.read_entry(name)

    def read_page_annotations(self, container_path: PathLike, page_number: int) -> AnnotationOverlay:
        """Overlay for one page; a missing entry is the empty overlay"""
        with self._open(container_path) as (handle, manifest):
            self._check_page(manifest, page_number)
            name = annotation_entry_name(page_number)
            if not handle.has_entry(name):
                return []
            return stroke_codec.decode(handle.read_entry(name))

    def read_all_annotations(self, container_path: PathLike) -> Dict[int, AnnotationOverlay]:
        """Non-empty overlays keyed by page number"""
        result: Dict[int, AnnotationOverlay] = {}
        with self._open(container_path) as (handle, _):
            for name in handle.list_entries():
                page_number = annotation_page_number(name)
                if page_number is None:
                    continue
                overlay = stroke_codec.decode(handle.read_entry(name))
                if overlay:
                    result[page_number] = overlay
        return dict(sorted(result.items()))

    def has_any_annotations(self, container_path: PathLike) -> bool:
        with self._open(container_path) as (handle, _):
            return any(annotation_page_number(n) is not None for n in handle.list_entries())

    def export_original(self, container_path: PathLike) -> bytes:
        """Verbatim bytes of the embedded source document"""
        with self._open(container_path) as (handle, manifest):
            return handle.read_entry(manifest.original_entry_name)

    # ==================== Write ====================

    def write_page_annotations(
        self,
        container_path: PathLike,
        page_number: int,
        overlay: AnnotationOverlay
    ):
        """
        Replace one page's overlay.

        An empty overlay (after dropping single-point taps) deletes the
        annotation entry instead of storing an empty payload.
        """
        container_path = Path(container_path)
        name = annotation_entry_name(page_number)
        overlay = stroke_codec.normalize_overlay(overlay)

        with self._open(container_path) as (handle, manifest):
            self._check_page(manifest, page_number)
            present = handle.has_entry(name)

        if overlay:
            upserts, deletes = {name: stroke_codec.encode(overlay)}, set()
        elif present:
            upserts, deletes = {}, {name}
        else:
            logger.debug(f"Page {page_number} of {container_path.name} already has no annotations")
            return

        self.store.replace_entries(
            container_path, upserts, deletes, precommit=check_container_entries
        )

        if overlay:
            logger.info(f"Saved {len(overlay)} annotation(s) on page {page_number} of {container_path.name}")
        else:
            logger.info(f"Cleared annotations on page {page_number} of {container_path.name}")

    def create_container(
        self,
        original: bytes,
        rendered_pages: Sequence[bytes],
        prior_annotations: Optional[Mapping[int, AnnotationOverlay]],
        title: str,
        target_path: PathLike,
        overwrite: bool = False
    ) -> Manifest:
        return self.converter.convert(
            original, rendered_pages, prior_annotations, title, target_path, overwrite
        )
