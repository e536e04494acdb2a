# driveflow/api/v1/endpoints/auth.py
from datetime import timedelta

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from loguru import logger
from pymongo.errors import PyMongoError

from driveflow.api.deps import get_approval_service
from driveflow.api.responses import validate_document_response
from driveflow.core.config import ACCESS_TOKEN_EXPIRE_MINUTES
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import (
    create_access_token,
    get_current_active_user,
    get_password_hash,
    verify_password,
)
from driveflow.models.approval import UserRegistrationData
from driveflow.models.enum import ApprovalType, RelatedModel, UserRole
from driveflow.models.token import Token
from driveflow.models.user import User
from driveflow.services.approvals import ApprovalService

router = APIRouter(tags=["Authentication"])


async def ensure_unique_identity(username: str, email) -> None:
    if await User.find_one(User.username == username):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already registered")
    if email and await User.find_one(User.email == email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")


async def insert_user(user_obj: User) -> User:
    try:
        await user_obj.insert()
    except PyMongoError as e:
        logger.error(f"Failed to save user '{user_obj.username}': {e}")
        raise HTTPException(status_code=500, detail="Failed to save user.") from e
    return user_obj


# --- /token ---
@router.post("/token", response_model=Token)
@limiter.limit("20/minute")
async def login_for_access_token(request: Request, form_data: OAuth2PasswordRequestForm = Depends()):
    user = await User.find_one(User.username == form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.warning(f"Failed login for '{form_data.username}'")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    if not user.is_approved:
        raise HTTPException(status_code=403, detail="Account is pending admin approval")

    access_token = create_access_token(
        data={"sub": user.username, "role": user.role.value},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return Token(access_token=access_token, token_type="bearer", role=user.role.value)


# --- /register --- (customer, langsung aktif)
@router.post("/register", response_model=User.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/hour")
async def register_user(request: Request, user_in: User.Create = Body(...)):
    await ensure_unique_identity(user_in.username, user_in.email)
    user_obj = User(
        **user_in.model_dump(exclude={"password"}),
        hashed_password=get_password_hash(user_in.password),
        role=UserRole.CUSTOMER,
        is_approved=True,
    )
    created = await insert_user(user_obj)
    logger.info(f"Customer '{created.username}' registered")
    return validate_document_response(created, User.Response)


# --- /register/partner --- (merchant, menunggu approval admin)
@router.post("/register/partner", response_model=User.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/hour")
async def register_partner(
    request: Request,
    partner_in: User.PartnerCreate = Body(...),
    approvals: ApprovalService = Depends(get_approval_service),
):
    """Register a workshop. The account stays locked until an admin approves the UserRegistration request."""
    await ensure_unique_identity(partner_in.username, partner_in.email)
    user_obj = User(
        **partner_in.model_dump(exclude={"password", "business_name", "address"}),
        hashed_password=get_password_hash(partner_in.password),
        role=UserRole.MERCHANT,
        is_approved=False,
    )
    created = await insert_user(user_obj)
    await approvals.request_approval(
        ApprovalType.USER_REGISTRATION,
        str(created.id),
        RelatedModel.USER,
        UserRegistrationData(
            username=created.username,
            role=created.role.value,
            business_name=partner_in.business_name,
            address=partner_in.address,
        ),
        None,
    )
    logger.info(f"Partner '{created.username}' registered, awaiting approval")
    return validate_document_response(created, User.Response)


@router.get("/me", response_model=User.Response)
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return validate_document_response(current_user, User.Response)
