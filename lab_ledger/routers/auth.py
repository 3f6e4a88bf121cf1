from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select
from sqlalchemy.exc import IntegrityError

from lab_ledger.actor import Actor
from lab_ledger.config import Settings
from lab_ledger.db import WRITE_LOCK, get_session
from lab_ledger.deps import get_app_settings
from lab_ledger.errors import _auth_401
from lab_ledger.models import Role, User
from lab_ledger.schemas import UserCreate, Token
from lab_ledger.security import hash_password, verify_password, create_access_token
from lab_ledger.services.audit import AuditAction, AuditLogger

router = APIRouter(prefix="/auth", tags=["auth"])


def _conflict(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=409, detail={"code": code, "message": message})


@router.post("/register", status_code=201)
def register(data: UserCreate, session: Session = Depends(get_session)):
    username = data.username.strip()
    session.connection(execution_options=WRITE_LOCK)
    existing = session.exec(select(User).where(User.username == username)).first()
    if existing:
        raise _conflict("USERNAME_EXISTS", "Username already exists")

    user = User(
        username=username,
        password_hash=hash_password(data.password),
        role=Role.MEMBER.value,
        full_name=data.full_name,
    )
    session.add(user)

    # unique constraint still guards a concurrent register of the same name
    try:
        session.flush()
        AuditLogger().record(session, Actor.from_user(user), AuditAction.REGISTER, "New member registration")
        session.commit()
    except IntegrityError:
        session.rollback()
        raise _conflict("USERNAME_EXISTS", "Username already exists")

    return {"id": user.id, "username": user.username, "role": user.role}


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    user = session.exec(select(User).where(User.username == form_data.username)).first()
    if (not user) or (not verify_password(form_data.password, user.password_hash)):
        raise _auth_401("INVALID_CREDENTIALS", "Incorrect username or password")

    token = create_access_token(user.username, user.role, settings)
    return {"access_token": token, "token_type": "bearer"}
