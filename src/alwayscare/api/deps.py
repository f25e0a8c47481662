from dataclasses import dataclass
from typing import Awaitable, Callable, Generator

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from src.alwayscare.core.security import owner_id_from_token
from src.alwayscare.domain.contracts.uow import UoW
from src.alwayscare.infra.db import SessionLocal
from src.alwayscare.infra.mq import enqueue_claimed_record
from src.alwayscare.infra.storage import UploadStorage
from src.alwayscare.infra.uow import SqlAlchemyUoW
from src.alwayscare.services.analysis_service import AnalysisService
from src.alwayscare.services.auth_service import AuthService


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

# publishes an already-claimed record id to the worker
Enqueuer = Callable[[int], Awaitable[None]]


@dataclass(frozen=True)
class OwnerContext:
    user_id: int
    email: str


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_uow(db: Session = Depends(get_db)) -> UoW:
    return SqlAlchemyUoW(db)


def get_current_owner(
    uow: UoW = Depends(get_uow),
    token: str = Depends(oauth2_scheme),
) -> OwnerContext:
    """Resolves the bearer token to the active user whose records may be read."""
    try:
        user_id = owner_id_from_token(token)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )

    user = uow.users.get_by_id(user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive.",
        )

    return OwnerContext(user_id=user.id, email=user.email)


# composition root
def get_auth_service(uow: UoW = Depends(get_uow)) -> AuthService:
    return AuthService(uow)

def get_analysis_service(uow: UoW = Depends(get_uow)) -> AnalysisService:
    return AnalysisService(uow)

def get_upload_storage() -> UploadStorage:
    return UploadStorage()

def get_enqueuer() -> Enqueuer:
    return enqueue_claimed_record
