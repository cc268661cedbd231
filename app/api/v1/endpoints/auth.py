"""
Request identity: bearer JWT only. Tokens are issued by the auth service; here we
only resolve them to an active User.
"""
from typing import Any, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import decode_access_token
from app.models.user import User
from app.core.logging_config import get_logger

logger = get_logger("auth")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Any:
    """Returns the current User. Annotated as Any so FastAPI does not use SQLAlchemy User as a Pydantic response type."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized to access this route",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        logger.warning("get_current_user: no token")
        raise credentials_exception

    payload = decode_access_token(token)
    if payload is None:
        logger.warning("get_current_user: token decode failed")
        raise credentials_exception

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        logger.warning("get_current_user: invalid sub in payload: %r", subject)
        raise credentials_exception

    user = db.query(User).filter(
        User.id == user_id,
        User.is_active == True
    ).first()

    if user is None:
        logger.warning("get_current_user: user not found or inactive, user_id=%s", user_id)
        raise credentials_exception
    return user
