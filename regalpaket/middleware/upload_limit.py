# FILE: regalpaket/middleware/upload_limit.py
"""
Size caps for container writes
"""
import logging
import re
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from regalpaket.errors import PayloadTooLargeError

logger = logging.getLogger(__name__)

_CREATE_PATH = re.compile(r"^/packages/?$")
_ANNOTATION_PATH = re.compile(r"^/packages/[^/]+/annotations/[^/]+/?$")


class UploadLimitMiddleware(BaseHTTPMiddleware):
    """
    Reject oversized container writes from their declared Content-Length.

    Package creation (original document plus every rendered page) and
    single-page annotation saves each have their own cap. Reads and other
    routes pass through. Bodies without a Content-Length are left to the
    create route, which checks the bytes it actually received.
    """
    
    def __init__(self, app, upload_limit: int, annotation_limit: int):
        super().__init__(app)
        self.upload_limit = upload_limit
        self.annotation_limit = annotation_limit
    
    def limit_for(self, method: str, path: str) -> Optional[int]:
        if method == "POST" and _CREATE_PATH.match(path):
            return self.upload_limit
        if method == "PUT" and _ANNOTATION_PATH.match(path):
            return self.annotation_limit
        return None
    
    async def dispatch(self, request: Request, call_next):
        limit = self.limit_for(request.method, request.url.path)
        declared = request.headers.get("content-length")
        
        if limit is not None and declared and declared.isdigit() and int(declared) > limit:
            error = PayloadTooLargeError(int(declared), limit)
            logger.warning(f"{request.method} {request.url.path} rejected: {error}")
            return JSONResponse(
                status_code=error.status_code,
                content={"error": error.code, "detail": str(error)}
            )
        
        return await call_next(request)
