# FILE: regalpaket/errors.py
"""
Error taxonomy for container reads, writes and conversion.

Every error carries a stable ``code`` and the HTTP ``status_code`` the
service layer answers with. None of them is fatal to the hosting process.
"""
from typing import Optional


class PackageError(Exception):
    """Base class for all container errors"""
    code = "package_error"
    status_code = 500


# --- stored bytes do not conform to the schema -----------------------------

class FormatError(PackageError):
    """Stored bytes do not conform to the expected schema"""
    code = "damaged_package"
    status_code = 422


class MalformedError(FormatError):
    code = "malformed"


class UnsupportedVersionError(FormatError):
    code = "unsupported_version"

    def __init__(self, version):
        super().__init__(f"Unsupported container format version: {version!r}")
        self.version = version


class UnknownVariantError(FormatError):
    """Unknown tool or stamp identifier in an annotation record"""
    code = "unknown_variant"

    def __init__(self, kind: str, value):
        super().__init__(f"Unknown {kind}: {value!r}")
        self.kind = kind
        self.value = value


class StructuralError(PackageError):
    """Manifest/archive invariant violation"""
    code = "damaged_package"
    status_code = 422


# --- not found --------------------------------------------------------------

class NotFoundError(PackageError):
    code = "not_found"
    status_code = 404


class ContainerNotFoundError(NotFoundError):
    code = "container_not_found"


class EntryNotFoundError(NotFoundError):
    code = "entry_not_found"


class PageNotFoundError(NotFoundError):
    code = "page_not_found"

    def __init__(self, page_number: int, page_count: Optional[int] = None):
        if page_count is None:
            msg = f"Page {page_number} not found"
        else:
            msg = f"Page {page_number} not found (container has {page_count} pages)"
        super().__init__(msg)
        self.page_number = page_number


# --- storage ----------------------------------------------------------------

class ArchiveIOError(PackageError):
    """Underlying storage failure; the target container is left unchanged"""
    code = "io_error"
    status_code = 500


class ArchiveBusyError(PackageError):
    """Write lock for a container could not be acquired in time"""
    code = "busy"
    status_code = 503


# --- conversion -------------------------------------------------------------

class ConversionError(PackageError):
    code = "conversion_failed"
    status_code = 400


class EmptyDocumentError(ConversionError):
    code = "empty_document"

    def __init__(self, msg: str = "Document has no rendered pages"):
        super().__init__(msg)


class PageRenderError(ConversionError):
    code = "page_render_failed"

    def __init__(self, page_number: int, reason: str):
        super().__init__(f"Page {page_number}: {reason}")
        self.page_number = page_number


class TargetExistsError(ConversionError):
    code = "target_exists"
    status_code = 409


# --- requests ---------------------------------------------------------------

class PayloadTooLargeError(PackageError):
    """Upload or annotation save above its configured cap"""
    code = "payload_too_large"
    status_code = 413

    def __init__(self, size: int, limit: int):
        super().__init__(f"Request body of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit
