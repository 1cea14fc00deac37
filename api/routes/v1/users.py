"""
api/routes/v1/users.py -- User management endpoints.

Routes:
  GET  /api/v1/users   -- list accounts (VIEW_USERS)
  POST /api/v1/users   -- create an account (MANAGE_USERS + role assignment policy)

Role assignment is checked with auth.permissions.validate_role_assignment(),
never by comparing role names here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import ErrorResponse, UserCreate, UserResponse
from auth.dependencies import require_permissions
from auth.models import AuthContext, User
from auth.permissions import Permission, validate_role_assignment
from auth.service import AuthService
from auth.store import UserStore

router = APIRouter()


@router.get("/users", response_model=list[UserResponse], response_model_by_alias=True)
def list_users(
    request: Request,
    identity: AuthContext = Depends(require_permissions(Permission.VIEW_USERS)),
) -> list[UserResponse]:
    """List all user accounts."""
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_user(
    request: Request,
    body: UserCreate,
    identity: AuthContext = Depends(require_permissions(Permission.MANAGE_USERS)),
) -> UserResponse:
    """Create an account. The password must satisfy the password policy."""
    reason = validate_role_assignment(identity.role, body.role, body.branch_id)
    if reason is not None:
        raise HTTPException(status_code=403, detail={"message": reason, "code": "ROLE_ASSIGNMENT_DENIED"})

    service: AuthService = request.app.state.auth_service
    user_store: UserStore = request.app.state.user_store
    new_user = User(
        email=body.email,
        name=body.name,
        role=body.role.value,
        password_hash=service.hash_new_password(body.password),
        branch_id=body.branch_id,
        agent_number=body.agent_number,
        created_by=identity.id,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"message": "A user with that email already exists.", "code": "CONFLICT"},
        ) from exc

    created = user_store.find_by_id(user_id)
    if created is None:
        raise HTTPException(status_code=500, detail={"message": "User not found after write.", "code": "INTERNAL_ERROR"})
    return UserResponse.from_user(created)
