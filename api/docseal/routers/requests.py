from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..auth import AccessContext, resolve_access_context
from ..db import get_session
from ..lifecycle import cancel_request, recipient_inbox, resend_request, signed_file_url

router = APIRouter()

@router.get("/mine")
def my_requests(session: Session = Depends(get_session), ctx: AccessContext = Depends(resolve_access_context)):
    return recipient_inbox(session, ctx.email)

@router.post("/{request_id}/cancel")
def cancel(request_id: int, session: Session = Depends(get_session), ctx: AccessContext = Depends(resolve_access_context)):
    return cancel_request(session, request_id, ctx)

@router.post("/{request_id}/resend")
def resend(request_id: int, session: Session = Depends(get_session), ctx: AccessContext = Depends(resolve_access_context)):
    return resend_request(session, request_id, ctx)

@router.get("/{request_id}/signed-url")
def signed_url(request_id: int, session: Session = Depends(get_session), ctx: AccessContext = Depends(resolve_access_context)):
    return signed_file_url(session, request_id, ctx)
