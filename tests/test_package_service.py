# FILE: tests/test_package_service.py

import json
import zipfile
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import ORIGINAL_PDF, make_image, pen_stroke, stamp
from regalpaket.errors import (
    ContainerNotFoundError, MalformedError, PageNotFoundError, StructuralError,
    UnknownVariantError, UnsupportedVersionError
)
from regalpaket.models.annotations import StampId
from regalpaket.services import archive_store
from regalpaket.services.layout import annotation_entry_name
from regalpaket.services.manifest_store import check_container_entries


def write_raw_container(path, manifest, entries):
    """Build a container by hand, bypassing every check"""
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("manifest.json", json.dumps(manifest))
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def raw_manifest(page_count=2, pages=None, version=1):
    if pages is None:
        pages = [{"page": n, "file": f"pages/page-{n}.png"} for n in range(1, page_count + 1)]
    return {
        "version": version,
        "name": "Hand built",
        "created": "2024-03-01T12:00:00Z",
        "pageCount": page_count,
        "originalFile": "original.pdf",
        "pages": pages,
    }


def raw_entries(page_numbers=(1, 2)):
    entries = {f"pages/page-{n}.png": make_image() for n in page_numbers}
    entries["original.pdf"] = ORIGINAL_PDF
    return entries


# ==================== Reads ====================

def test_fresh_container_reads(service, container, page_images):
    assert service.open_manifest(container).page_count == 3
    assert service.read_page_image(container, 1) == page_images[0]
    assert service.read_page_annotations(container, 2) == []
    assert service.read_all_annotations(container) == {}
    assert service.has_any_annotations(container) is False


def test_page_image_with_name(service, container, page_images):
    name, data = service.read_page_image_with_name(container, 3)
    
    assert name == "pages/page-3.png"
    assert data == page_images[2]


@pytest.mark.parametrize("page_number", [0, -1, 4, 99])
def test_pages_outside_document(service, container, page_number):
    with pytest.raises(PageNotFoundError) as exc_info:
        service.read_page_image(container, page_number)
    assert exc_info.value.page_number == page_number
    
    with pytest.raises(PageNotFoundError):
        service.read_page_annotations(container, page_number)
    
    with pytest.raises(PageNotFoundError):
        service.write_page_annotations(container, page_number, [pen_stroke([(0, 0), (1, 1)])])


def test_missing_container(service, library_dir):
    with pytest.raises(ContainerNotFoundError):
        service.open_manifest(library_dir / "Ghost.regal")


# ==================== Writes ====================

def test_write_then_read(service, container):
    overlay = [pen_stroke([(1, 1), (2, 2), (3, 3)]), stamp(StampId.CHECK)]
    
    service.write_page_annotations(container, 2, overlay)
    
    assert service.read_page_annotations(container, 2) == overlay
    assert service.read_all_annotations(container) == {2: overlay}
    assert service.has_any_annotations(container) is True


def test_write_replaces_previous_overlay(service, container):
    service.write_page_annotations(container, 1, [stamp(StampId.STAR)])
    service.write_page_annotations(container, 1, [stamp(StampId.X)])
    
    assert service.read_page_annotations(container, 1) == [stamp(StampId.X)]


def test_write_is_idempotent(service, container):
    overlay = [pen_stroke([(0, 0), (4, 4)])]
    
    service.write_page_annotations(container, 3, overlay)
    first = service.store.read_entry(container, annotation_entry_name(3))
    service.write_page_annotations(container, 3, overlay)
    
    assert service.store.read_entry(container, annotation_entry_name(3)) == first
    assert service.read_page_annotations(container, 3) == overlay


def test_empty_overlay_removes_entry(service, container):
    """Clearing a page leaves no annotation entry behind"""
    service.write_page_annotations(container, 2, [pen_stroke([(0, 0), (1, 1)])])
    
    service.write_page_annotations(container, 2, [])
    
    assert annotation_entry_name(2) not in service.store.list_entries(container)
    assert service.read_page_annotations(container, 2) == []
    assert service.has_any_annotations(container) is False


def test_clearing_unannotated_page_is_noop(service, container):
    before = container.read_bytes()
    
    service.write_page_annotations(container, 1, [])
    
    assert container.read_bytes() == before


def test_tap_only_overlay_is_empty(service, container):
    """Single-point strokes are dropped before storing"""
    service.write_page_annotations(container, 1, [pen_stroke([(5, 5)]), pen_stroke([(6, 6)])])
    
    assert annotation_entry_name(1) not in service.store.list_entries(container)


def test_taps_dropped_from_mixed_overlay(service, container):
    kept = pen_stroke([(0, 0), (9, 9)])
    
    service.write_page_annotations(container, 1, [pen_stroke([(5, 5)]), kept])
    
    assert service.read_page_annotations(container, 1) == [kept]


def test_other_pages_untouched_by_write(service, container, page_images):
    service.write_page_annotations(container, 1, [stamp()])
    service.write_page_annotations(container, 3, [stamp(StampId.BREATH)])
    
    service.write_page_annotations(container, 1, [])
    
    assert service.read_page_annotations(container, 3) == [stamp(StampId.BREATH)]
    assert service.read_page_image(container, 2) == page_images[1]
    assert service.export_original(container) == ORIGINAL_PDF


def test_container_stays_valid_after_writes(service, container):
    for page_number in (1, 2, 3):
        service.write_page_annotations(container, page_number, [stamp(x=page_number)])
    service.write_page_annotations(container, 2, [])
    
    with service.store.open(container) as handle:
        manifest = check_container_entries(handle.entry_sizes(), handle.read_entry)
    
    assert manifest.page_count == 3
    assert set(service.read_all_annotations(container)) == {1, 3}


# ==================== Damaged containers ====================

def test_page_count_mismatch(service, library_dir):
    path = write_raw_container(
        library_dir / "Short.regal", raw_manifest(page_count=3, pages=[
            {"page": 1, "file": "pages/page-1.png"}, {"page": 2, "file": "pages/page-2.png"}
        ]), raw_entries()
    )
    
    with pytest.raises(StructuralError):
        service.read_page_image(path, 1)


def test_missing_page_image(service, library_dir):
    path = write_raw_container(library_dir / "Hole.regal", raw_manifest(), raw_entries((1,)))
    
    with pytest.raises(StructuralError):
        service.read_page_image(path, 1)


def test_future_version(service, library_dir):
    path = write_raw_container(library_dir / "Future.regal", raw_manifest(version=2), raw_entries())
    
    with pytest.raises(UnsupportedVersionError):
        service.open_manifest(path)


def test_missing_manifest(service, library_dir):
    path = library_dir / "Headless.regal"
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in raw_entries().items():
            zf.writestr(name, data)
    
    with pytest.raises(StructuralError):
        service.open_manifest(path)


def test_legacy_page_file_names(service, library_dir):
    """Bare file names in older manifests live under pages/"""
    manifest = raw_manifest(pages=[{"page": 1, "file": "page-1.png"}, {"page": 2, "file": "page-2.png"}])
    path = write_raw_container(library_dir / "Legacy.regal", manifest, raw_entries())
    
    assert service.read_page_image_with_name(path, 2)[0] == "pages/page-2.png"


def test_unknown_tool_in_stored_overlay(service, library_dir):
    entries = raw_entries()
    entries["annotations/page-1.json"] = json.dumps([
        {"tool": "laser", "color": "#ff0000", "lineWidth": 2, "points": [{"x": 0, "y": 0}, {"x": 1, "y": 1}]}
    ])
    path = write_raw_container(library_dir / "Laser.regal", raw_manifest(), entries)
    
    with pytest.raises(UnknownVariantError):
        service.read_page_annotations(path, 1)


def test_garbled_stored_overlay(service, library_dir):
    entries = raw_entries()
    entries["annotations/page-2.json"] = b"[{not json"
    path = write_raw_container(library_dir / "Garbled.regal", raw_manifest(), entries)
    
    with pytest.raises(MalformedError):
        service.read_all_annotations(path)


def test_write_refuses_damaged_container(service, library_dir):
    path = write_raw_container(library_dir / "Hole.regal", raw_manifest(), raw_entries((1,)))
    before = path.read_bytes()
    
    with pytest.raises(StructuralError):
        service.write_page_annotations(path, 1, [stamp()])
    
    assert path.read_bytes() == before


# ==================== Concurrency ====================

def test_concurrent_writes_to_different_pages(service, library_dir, original_pdf):
    """Parallel writers on one container never lose each other's pages"""
    pages = [make_image((i * 50, 0, 0)) for i in range(4)]
    path = library_dir / "Quartet.regal"
    service.create_container(original_pdf, pages, {}, "Quartet", path)
    
    for round_number in range(10):
        overlays = {
            page_number: [stamp(x=float(round_number), y=float(page_number))]
            for page_number in range(1, 5)
        }
        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = [
                pool.submit(service.write_page_annotations, path, page_number, overlay)
                for page_number, overlay in overlays.items()
            ]
            for future in futures:
                future.result()
        
        assert service.read_all_annotations(path) == overlays


def test_readers_during_writes(service, container, page_images):
    """Readers always see a complete container"""
    def write(i):
        service.write_page_annotations(container, (i % 3) + 1, [stamp(x=float(i))])
    
    def read(i):
        assert service.open_manifest(container).page_count == 3
        return service.read_page_image(container, (i % 3) + 1)
    
    with ThreadPoolExecutor(max_workers=6) as pool:
        writes = [pool.submit(write, i) for i in range(12)]
        reads = [pool.submit(read, i) for i in range(24)]
        for future in writes:
            future.result()
        images = [future.result() for future in reads]
    
    assert all(image in page_images for image in images)
    assert set(service.read_all_annotations(container)) == {1, 2, 3}


def test_termination_after_rename_leaves_new_container(service, container, monkeypatch):
    """Once the rename happened the new container is complete and valid"""
    class SimulatedTermination(BaseException):
        pass
    
    def killed(directory):
        raise SimulatedTermination()
    
    monkeypatch.setattr(archive_store, "_sync_directory", killed)
    
    with pytest.raises(SimulatedTermination):
        service.write_page_annotations(container, 2, [stamp(StampId.ACCENT)])
    
    monkeypatch.undo()
    assert service.open_manifest(container).page_count == 3
    assert service.read_page_annotations(container, 2) == [stamp(StampId.ACCENT)]
    assert list(container.parent.glob(".*.tmp")) == []


def test_stray_page_images(service, library_dir):
    """Page images the manifest does not list are a page count mismatch"""
    entries = raw_entries((1, 2, 3, 4, 5))
    path = write_raw_container(library_dir / "Extra.regal", raw_manifest(page_count=3), entries)
    
    with pytest.raises(StructuralError):
        service.open_manifest(path)
