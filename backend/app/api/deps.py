"""FastAPI dependency injection — auth guards and engine services."""
import os
from dataclasses import dataclass
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.db import get_db
from app.db.stores import SqlCompanyDirectory, SqlConfigurationStore, SqlDropdownStore, SqlVehicleStore
from app.models.orm_models import User
from app.services.config_mutations import ConfigMutationService
from app.services.config_resolver import ConfigResolver
from app.services.vehicle_results import VehicleResultService

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "changethis_use_a_real_secret_in_production_64chars")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

SUPER_ADMIN = "company_super_admin"
ADMIN = "company_admin"

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")
    return user


def require_role(role_name: str):
    """
    Factory for role-gated dependencies. Super admins pass every role check.

    Usage:
        user: User = Depends(require_role(SUPER_ADMIN))
    """
    async def _require_role(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role_name not in (role_name, SUPER_ADMIN):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{role_name} role required",
            )
        return current_user

    return _require_role


require_admin = require_role(ADMIN)
require_super_admin = require_role(SUPER_ADMIN)


def get_company_id(user: User = Depends(require_admin)) -> str:
    if not user.company_id:
        raise HTTPException(status_code=400, detail="User has no company assigned")
    return user.company_id


def require_company_access(company_id: str, user: User = Depends(require_admin)) -> str:
    """Path-scoped company id; users only reach their own company's data."""
    if user.company_id != company_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access to this company is not allowed")
    return company_id


@dataclass
class EngineServices:
    resolver: ConfigResolver
    mutations: ConfigMutationService
    results: VehicleResultService


async def get_services(db: AsyncSession = Depends(get_db)) -> EngineServices:
    configs = SqlConfigurationStore(db)
    dropdowns = SqlDropdownStore(db)
    vehicles = SqlVehicleStore(db)
    return EngineServices(
        resolver=ConfigResolver(configs, SqlCompanyDirectory(db), dropdowns, vehicles),
        mutations=ConfigMutationService(configs, dropdowns),
        results=VehicleResultService(vehicles, configs),
    )
