import logging
from typing import Literal, Optional

from fastapi import Depends, HTTPException, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from .models import User
from .security_utils import create_jwt_token, verify_jwt_token, verify_password_bcrypt

logger = logging.getLogger(__name__)

security = HTTPBearer()

Role = Literal["teacher", "student"]


class AuthenticationError(Exception):
    """Missing, malformed, expired or forged credential"""


class InvalidCredentials(Exception):
    """Unknown username or wrong password"""


class Actor(BaseModel):
    """Authenticated identity attached to a request or connection"""

    id: str
    role: Role
    name: str

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"


def authenticate_user(db: Session, username: str, password: str) -> User:
    """Check a username/password pair against the users collection"""
    user = db.query(User).filter(User.name == username).first()
    if not user:
        logger.warning(f"⚠️ Login attempt for unknown user: {username}")
        raise InvalidCredentials()

    if not verify_password_bcrypt(password, user.password_hash):
        logger.warning(f"⚠️ Password mismatch for user: {username}")
        raise InvalidCredentials()

    return user


def issue_token(user: User) -> str:
    """Sign a session token asserting {id, role, name}"""
    return create_jwt_token({"sub": user.public_id, "role": user.role, "name": user.name})


def resolve_actor(token: Optional[str]) -> Actor:
    """Turn a bearer token into an Actor or raise AuthenticationError"""
    if not token:
        raise AuthenticationError("No token provided")

    payload = verify_jwt_token(token)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    try:
        return Actor(id=payload.get("sub"), role=payload.get("role"), name=payload.get("name"))
    except ValidationError as e:
        logger.warning(f"⚠️ Token carries malformed claims: {e.errors()}")
        raise AuthenticationError("Malformed token claims") from e


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """REST dependency resolving the bearer token to an Actor"""
    try:
        return resolve_actor(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e


def websocket_token(websocket: WebSocket) -> Optional[str]:
    """Token from the ``token`` query parameter or an Authorization header"""
    token = websocket.query_params.get("token")
    if token:
        return token

    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None
