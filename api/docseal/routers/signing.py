from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..db import get_session
from ..lifecycle import resolve, submit
from ..schemas import SignSubmit

router = APIRouter()

# Recipients have no account here: the token in the path is the only credential.

@router.get("/{token}")
def load_signing_session(token: str, session: Session = Depends(get_session)):
    return resolve(session, token)

@router.post("/{token}/submit")
def submit_signing(token: str, payload: SignSubmit, session: Session = Depends(get_session)):
    return submit(session, token, payload)
