import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import Actor, InvalidCredentials, authenticate_user, get_current_actor, issue_token
from ..config import LOGIN_RATE_LIMIT, LOGIN_RATE_WINDOW_SECONDS
from ..database import get_db
from ..rate_limiter import create_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Authentication"])

login_rate_limit = create_rate_limiter(
    limit=LOGIN_RATE_LIMIT, window_seconds=LOGIN_RATE_WINDOW_SECONDS, key_prefix="login"
)


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: Actor


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    db: Session = Depends(get_db),
    _: None = Depends(login_rate_limit),
):
    """Exchange a username/password for a bearer token"""
    try:
        user = authenticate_user(db, data.username, data.password)
    except InvalidCredentials as e:
        raise HTTPException(status_code=401, detail="Invalid username or password") from e

    actor = Actor(id=user.public_id, role=user.role, name=user.name)
    logger.info(f"✅ Login successful: {actor.name} ({actor.role})")
    return LoginResponse(token=issue_token(user), user=actor)


@router.get("/me", response_model=Actor)
async def get_me(actor: Actor = Depends(get_current_actor)):
    """Identity asserted by the presented token"""
    return actor
