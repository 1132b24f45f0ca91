from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..activity import recent_activity
from ..auth import AccessContext, resolve_access_context
from ..db import get_session

router = APIRouter()

@router.get("")
def activity_feed(
    limit: int = Query(50, ge=1, le=200),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    sender_id = None if ctx.role == "admin" else ctx.user_id
    return recent_activity(session, sender_id=sender_id, limit=limit)
