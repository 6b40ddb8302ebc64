"""
Identity - users, roles, bearer tokens and role gates.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import get_db
from .models import RevokedToken, Role, RoleName, User
from .results import OperationResult, raise_for_result
from .schemas import MessageResponse, RoleAssignment, Token, UserCreate, UserResponse

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""
    user_id: str
    email: str
    name: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    token_id: Optional[str] = None

    def is_in_role(self, role: str) -> bool:
        return str(getattr(role, "value", role)) in self.roles

    @property
    def is_admin(self) -> bool:
        return self.is_in_role(RoleName.ADMIN)


# Utility functions
def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        roles=user.role_names,
        created_at=user.created_at
    )


class IdentityService:
    """User, role and token operations backed by the identity tables."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def find_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def ensure_role(self, name: str) -> Role:
        """Return the role, creating it if missing."""
        name = str(getattr(name, "value", name))
        result = await self.db.execute(select(Role).where(Role.name == name))
        role = result.scalar_one_or_none()
        if role is None:
            role = Role(name=name)
            self.db.add(role)
            await self.db.flush()
            logger.info(f"Role created: {name}")
        return role

    async def create_user(
        self,
        email: str,
        password: str,
        name: str,
        roles: Iterable[str] = ()
    ) -> OperationResult:
        """Create a user with a hashed password and the given roles."""
        if await self.find_user_by_email(email):
            return OperationResult.rejected("Email already registered")

        user = User(
            email=email.lower(),
            password_hash=get_password_hash(password),
            name=name,
            roles=[await self.ensure_role(role) for role in roles]
        )
        self.db.add(user)
        await self.db.commit()

        logger.info(f"User registered: {user.email}")
        return OperationResult.ok(user, "Account created.")

    async def assign_role(self, user_id: str, role_name: str) -> OperationResult:
        user = await self.get_user(user_id)
        if user is None:
            return OperationResult.not_found("User not found.")

        role = await self.ensure_role(role_name)
        if role.name not in user.role_names:
            user.roles.append(role)
            await self.db.commit()
            logger.info(f"Role {role.name} assigned to {user.email}")

        return OperationResult.ok(user, f"{user.email} is now in role {role.name}.")

    async def is_in_role(self, user_id: str, role_name: str) -> bool:
        user = await self.get_user(user_id)
        return user is not None and str(getattr(role_name, "value", role_name)) in user.role_names

    def create_access_token(self, user_id: str) -> str:
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.settings.jwt_expiration_minutes)
        to_encode = {"sub": user_id, "jti": str(uuid4()), "exp": expire}
        return jwt.encode(to_encode, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    async def sign_in(self, email: str, password: str) -> Optional[str]:
        """Check the credential pair and return an access token, or None."""
        user = await self.find_user_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login for {email}")
            return None

        logger.info(f"User logged in: {user.email}")
        return self.create_access_token(user.id)

    async def sign_out(self, principal: Principal) -> None:
        """Revoke the token the principal authenticated with."""
        if principal.token_id is None:
            return
        self.db.add(RevokedToken(jti=principal.token_id, user_id=principal.user_id))
        await self.db.commit()
        logger.info(f"User logged out: {principal.email}")

    async def resolve_principal(self, token: str) -> Optional[Principal]:
        """Decode a bearer token into the current principal."""
        try:
            payload = jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except JWTError:
            return None

        user_id = payload.get("sub")
        token_id = payload.get("jti")
        if user_id is None:
            return None

        if token_id is not None and await self.db.get(RevokedToken, token_id) is not None:
            return None

        user = await self.get_user(user_id)
        if user is None:
            return None

        return Principal(
            user_id=user.id,
            email=user.email,
            name=user.name,
            roles=frozenset(user.role_names),
            token_id=token_id
        )


# Dependencies
async def get_current_principal(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> Principal:
    principal = await IdentityService(db).resolve_principal(token)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_roles(*roles: RoleName):
    """Dependency factory allowing callers in any of the given roles."""
    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not any(principal.is_in_role(role) for role in roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have access to this resource."
            )
        return principal

    return dependency


require_admin = require_roles(RoleName.ADMIN)
require_customer = require_roles(RoleName.CUSTOMER)


# API Endpoints
router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
admin_router = APIRouter(prefix="/api/v1/admin/users", tags=["admin"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a new customer account."""
    result = await IdentityService(db).create_user(
        email=user_data.email,
        password=user_data.password,
        name=user_data.name,
        roles=[RoleName.CUSTOMER]
    )
    raise_for_result(result)
    return user_to_response(result.value)


@router.post("/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db)
):
    """Login and get access token."""
    access_token = await IdentityService(db).sign_in(form_data.username, form_data.password)
    if access_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Token(access_token=access_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Revoke the current access token."""
    await IdentityService(db).sign_out(principal)
    return MessageResponse(message="Signed out.")


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Get current user profile."""
    user = await IdentityService(db).get_user(principal.user_id)
    return user_to_response(user)


@admin_router.post("/{user_id}/roles", response_model=UserResponse)
async def assign_user_role(
    user_id: str,
    assignment: RoleAssignment,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin)
):
    """Add a role to a user (admin only)."""
    result = raise_for_result(await IdentityService(db).assign_role(user_id, assignment.role))
    return user_to_response(result.value)
