"""
Wire-level errors.

Every failure is answered with HTTP 500 and ``{"err": <tag>, "meta": ...}``.
Only malformed requests get their own tag; everything else collapses to
``generic`` so engine and I/O details stay in the logs.
"""

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

INVALID_RECOGNITION_REQUEST = "invalid_recognition_request"
GENERIC = "generic"


class ApiError(Exception):
    """An error that is reported to the client."""

    status_code = 500

    def __init__(self, tag: str, meta: Optional[str] = None):
        self.tag = tag
        self.meta = meta
        super().__init__(f"{tag}: {meta}" if meta else tag)

    @classmethod
    def invalid_request(cls) -> "ApiError":
        return cls(INVALID_RECOGNITION_REQUEST)

    @classmethod
    def msg(cls, message: str) -> "ApiError":
        return cls(GENERIC, message)

    def to_dict(self) -> Dict[str, Any]:
        return {"err": self.tag, "meta": self.meta}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())
