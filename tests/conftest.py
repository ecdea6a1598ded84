# FILE: tests/conftest.py

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import io
import pytest
from PIL import Image

from regalpaket import config
from regalpaket.models.annotations import Point, Stamp, StampId, Stroke, StrokeTool
from regalpaket.services.archive_store import ArchiveStore
from regalpaket.services.package_service import PackageService
from regalpaket.services.path_locks import PathLockRegistry

ORIGINAL_PDF = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"


def make_image(color=(255, 255, 255), size=(40, 56), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def pen_stroke(points, color="#1a1a1a", line_width=2.0, tool=StrokeTool.PEN) -> Stroke:
    return Stroke(
        tool=tool,
        color=color,
        line_width=line_width,
        points=[Point(x=x, y=y) for x, y in points]
    )


def stamp(stamp_id=StampId.FERMATA, x=10.0, y=20.0, size=28.0) -> Stamp:
    return Stamp(stamp_id=stamp_id, color="#1a1a1a", x=x, y=y, size=size)


@pytest.fixture
def original_pdf():
    """Stand-in source document"""
    return ORIGINAL_PDF


@pytest.fixture
def page_images():
    """Three distinct rendered pages"""
    return [
        make_image((255, 255, 255)),
        make_image((240, 240, 230)),
        make_image((220, 230, 240)),
    ]


@pytest.fixture
def library_dir(tmp_path):
    """Empty library directory"""
    lib = tmp_path / "library"
    lib.mkdir()
    return lib


@pytest.fixture
def lock_registry():
    return PathLockRegistry()


@pytest.fixture
def store(lock_registry):
    return ArchiveStore(lock_registry, lock_timeout=5.0, compress_level=5)


@pytest.fixture
def service(store):
    return PackageService(store)


@pytest.fixture
def container(service, library_dir, page_images, original_pdf):
    """Freshly converted three-page container without annotations"""
    path = library_dir / "Sonata.regal"
    service.create_container(original_pdf, page_images, {}, "Sonata", path)
    return path


@pytest.fixture
def app_settings(tmp_path, monkeypatch):
    """Settings pointing at an isolated library"""
    monkeypatch.setenv("LIBRARY_PATH", str(tmp_path / "api-library"))
    monkeypatch.setenv("LOCK_TIMEOUT_SECONDS", "5")
    monkeypatch.setattr(config, "_settings", None)
    return config.get_settings()
