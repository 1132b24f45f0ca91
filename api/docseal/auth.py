from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel
from sqlmodel import Session, select

from . import config
from .db import get_session
from .models import Document, User


class AccessContext(BaseModel):
    role: str
    user_id: Optional[int] = None
    email: Optional[str] = None
    display_name: Optional[str] = None


def context_for(user: User) -> AccessContext:
    return AccessContext(
        role=user.role,
        user_id=user.id,
        email=user.email,
        display_name=user.full_name or user.email,
    )


def resolve_access_context(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    session: Session = Depends(get_session),
) -> AccessContext:
    if not x_access_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    if config.ADMIN_ACCESS_TOKEN and x_access_token == config.ADMIN_ACCESS_TOKEN:
        return AccessContext(role="admin", display_name="Administrator")
    user = session.exec(select(User).where(User.access_token == x_access_token)).first()
    if user:
        return context_for(user)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")


def require_sender(context: AccessContext = Depends(resolve_access_context)) -> AccessContext:
    if context.user_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Sender account required")
    return context


def can_manage(context: AccessContext, document: Document) -> bool:
    return context.role == "admin" or (context.user_id is not None and document.sender_id == context.user_id)
