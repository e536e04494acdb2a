# driveflow/api/v1/endpoints/users.py
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request, status
from loguru import logger
from pymongo.errors import PyMongoError

from driveflow.api.responses import validate_document_response
from driveflow.core.context import RequestContext
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import get_password_hash, require_admin
from driveflow.models.enum import StaffSubRole, UserRole
from driveflow.models.user import User

router = APIRouter(
    tags=["Users - Admin"],
    dependencies=[Depends(require_admin)],
)


# --- Helper get_user_or_404 ---
async def get_user_or_404(user_id: str) -> User:
    if not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user ID format.")
    user = await User.find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User with ID '{user_id}' not found")
    return user


# --- GET / ---
@router.get("/", response_model=List[User.Response], summary="List Users (Admin Only)")
@limiter.limit("30/minute")
async def read_users(
    request: Request,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    role: Optional[UserRole] = Query(None),
    sub_role: Optional[StaffSubRole] = Query(None),
    pending_only: bool = Query(False, description="Only accounts waiting for registration approval"),
):
    """List users, optionally by role (e.g. all drivers for the assignment screen)."""
    query = {}
    if role:
        query["role"] = role.value
    if sub_role:
        query["sub_role"] = sub_role.value
    if pending_only:
        query["is_approved"] = False
    users = await User.find(query).sort("+username").skip(skip).limit(limit).to_list()
    return [validate_document_response(u, User.Response) for u in users]


# --- POST / ---
@router.post("/", response_model=User.Response, status_code=status.HTTP_201_CREATED, summary="Create User (Admin Only)")
@limiter.limit("10/hour")
async def create_user_by_admin(request: Request, user_in: User.AdminCreate = Body(...)):
    """Create staff, merchants or other admins. Accounts created here are approved immediately."""
    logger.info(f"Admin attempting to create user: {user_in.username}")
    if await User.find_one(User.username == user_in.username):
        raise HTTPException(status_code=400, detail="Username exists.")
    if user_in.email and await User.find_one(User.email == user_in.email):
        raise HTTPException(status_code=400, detail="Email exists.")
    if user_in.sub_role and user_in.role != UserRole.STAFF:
        raise HTTPException(status_code=400, detail="Only staff accounts carry a sub-role.")

    user_obj = User(
        **user_in.model_dump(exclude={"password"}),
        hashed_password=get_password_hash(user_in.password),
        is_approved=True,
    )
    try:
        await user_obj.insert()
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail="Failed to save user.") from e
    return validate_document_response(user_obj, User.Response)


# --- GET /{user_id} ---
@router.get("/{user_id}", response_model=User.Response, summary="Get User Details (Admin Only)")
@limiter.limit("60/minute")
async def read_user(request: Request, user_id: str = Path(...)):
    return validate_document_response(await get_user_or_404(user_id), User.Response)


# --- PUT /{user_id} ---
@router.put("/{user_id}", response_model=User.Response, summary="Update User (Admin Only)")
@limiter.limit("20/hour")
async def update_user(request: Request, user_id: str = Path(...), user_in: User.AdminUpdate = Body(...)):
    logger.info(f"Admin attempting to update user: {user_id}")
    user_to_update = await get_user_or_404(user_id)
    update_data = user_in.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="No update data provided.")
    if update_data.get("email") and update_data["email"] != user_to_update.email:
        if await User.find_one(User.email == update_data["email"], User.id != user_to_update.id):
            raise HTTPException(status_code=400, detail="Email exists.")
    if "password" in update_data:
        if update_data["password"]:
            update_data["hashed_password"] = get_password_hash(update_data["password"])
        del update_data["password"]
    update_data["updated_at"] = datetime.now(timezone.utc)
    try:
        await user_to_update.update({"$set": update_data})
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail="Failed to update user.") from e
    return validate_document_response(await get_user_or_404(user_id), User.Response)


# --- PATCH /{user_id}/disable & /enable ---
async def set_disabled(user_id: str, disabled: bool) -> dict:
    user = await get_user_or_404(user_id)
    if user.disabled != disabled:
        try:
            await user.update({"$set": {"disabled": disabled, "updated_at": datetime.now(timezone.utc)}})
        except PyMongoError as e:
            raise HTTPException(status_code=500, detail="Failed to update user.") from e
        logger.info(f"User '{user.username}' (ID: {user_id}) disabled={disabled}.")
    else:
        logger.info(f"User {user_id} already disabled={disabled}.")
    return {"user_id": user_id, "disabled": disabled}


@router.patch("/{user_id}/disable", summary="Disable User (Admin Only)")
@limiter.limit("30/hour")
async def disable_user(request: Request, user_id: str = Path(...)):
    return {"message": "User disabled successfully", **await set_disabled(user_id, True)}


@router.patch("/{user_id}/enable", summary="Enable User (Admin Only)")
@limiter.limit("30/hour")
async def enable_user(request: Request, user_id: str = Path(...)):
    return {"message": "User enabled successfully", **await set_disabled(user_id, False)}


# --- DELETE /{user_id} ---
@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete User (Admin Only)")
@limiter.limit("5/hour")
async def delete_user(request: Request, user_id: str = Path(...), ctx: RequestContext = Depends(require_admin)):
    logger.warning(f"Admin '{ctx.username}' attempting to delete user: {user_id}")
    user_to_delete = await get_user_or_404(user_id)
    if str(user_to_delete.id) == ctx.user_id:
        raise HTTPException(status_code=403, detail="Admins cannot delete themselves.")
    if user_to_delete.role == UserRole.ADMIN:
        if await User.find(User.role == UserRole.ADMIN).count() <= 1:
            raise HTTPException(status_code=403, detail="Cannot delete the last admin.")
    try:
        await user_to_delete.delete()
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail="Failed to delete user.") from e
    logger.info(f"User '{user_to_delete.username}' (ID: {user_id}) deleted by admin '{ctx.username}'.")
    return None
