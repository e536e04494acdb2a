# driveflow/core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional, List
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from driveflow.core.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from driveflow.core.context import RequestContext
from driveflow.models.token import TokenData
from driveflow.models.user import User
from driveflow.models.enum import UserRole

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")

credentials_exception = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


# --- Password ---
def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


# --- Token ---
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> TokenData:
    """Decode a bearer token. Raises JWTError when invalid or missing 'sub'."""
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    username = payload.get("sub")
    if username is None:
        raise JWTError("Username ('sub') missing in token payload.")
    return TokenData(username=username)


# --- Current user ---
async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> User:
    """
    Resolve the user for this request. AuthMiddleware normally stores the
    username in ``request.state``; otherwise the token is decoded here.
    """
    username: Optional[str] = getattr(request.state, "username", None)
    if not username:
        logger.warning("Username not found in request state, decoding token in dependency.")
        try:
            username = decode_access_token(token).username
        except JWTError as e:
            raise credentials_exception from e

    user = await User.find_one(User.username == username)
    if user is None:
        logger.warning(f"User '{username}' not found in database.")
        raise credentials_exception
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if current_user.disabled:
        logger.warning(f"Access denied for disabled user '{current_user.username}'.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")
    if not current_user.is_approved:
        logger.warning(f"Access denied for unapproved user '{current_user.username}'.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is pending admin approval")
    return current_user


async def get_request_context(request: Request, current_user: User = Depends(get_current_active_user)) -> RequestContext:
    """Explicit per-request actor passed into the service layer."""
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return RequestContext(
        user_id=str(current_user.id),
        username=current_user.username,
        role=current_user.role,
        sub_role=current_user.sub_role,
        ip_address=ip_address,
        request_id=getattr(request.state, "request_id", None),
    )


# --- Role checks ---
def require_roles(required_roles: List[UserRole]):
    """Dependency factory: the caller must hold one of ``required_roles``."""
    async def roles_checker(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if ctx.role not in required_roles:
            logger.warning(
                f"Forbidden: User '{ctx.username}' with role '{ctx.role.value}' "
                f"attempted action requiring one of roles: {[r.value for r in required_roles]}."
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Operation not permitted. Required roles: {[r.value for r in required_roles]}",
            )
        return ctx
    return roles_checker


def require_role(required_role: UserRole):
    return require_roles([required_role])


require_admin = require_role(UserRole.ADMIN)
require_operator = require_roles([UserRole.ADMIN, UserRole.MERCHANT, UserRole.STAFF])
