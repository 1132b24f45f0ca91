from datetime import datetime
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class DocSealError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def payload(self) -> dict:
        body = {"error": self.message}
        for key, value in self.extra.items():
            body[key] = value.isoformat() if isinstance(value, datetime) else value
        return body


class InputError(DocSealError):
    status_code = 400


class Forbidden(DocSealError):
    status_code = 403


class NotFound(DocSealError):
    status_code = 404


class Conflict(DocSealError):
    status_code = 409


class Gone(DocSealError):
    status_code = 410


class ValidationFailed(InputError):
    def __init__(self, errors: dict):
        super().__init__("Some fields are missing or invalid", errors=errors)
        self.errors = errors


class AlreadySigned(Conflict):
    def __init__(self, signed_at: Optional[datetime]):
        super().__init__("This document has already been signed", status="signed", signed_at=signed_at)
        self.signed_at = signed_at


class RequestCancelled(Gone):
    def __init__(self):
        super().__init__("This signing request has been cancelled", status="cancelled")


async def docseal_error_handler(request: Request, exc: DocSealError):
    return JSONResponse(status_code=exc.status_code, content=exc.payload())
