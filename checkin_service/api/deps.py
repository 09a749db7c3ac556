# checkin_service/api/deps.py
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from checkin_service.core.config import settings
from checkin_service.schemas.token import TokenPayload
from checkin_service.services.check_in_service import CheckInService
from checkin_service.services.lifecycle_scheduler import SessionLifecycleScheduler
from checkin_service.services.admission_controller import AdmissionController
from checkin_service.services.cache_facade import CacheFacade
from checkin_service.services import providers


# The `tokenUrl` is only used for the OpenAPI docs; tokens are issued elsewhere.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def get_current_user(token: str = Depends(oauth2_scheme)) -> TokenPayload:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
        token_data = TokenPayload(**payload)
    except (JWTError, ValueError):
        # Catches any error from jose or Pydantic validation
        raise credentials_exception

    return token_data


# Thin wrappers so tests can override a single service via dependency_overrides.


def get_check_in_service() -> CheckInService:
    return providers.get_check_in_service()


def get_lifecycle_scheduler() -> SessionLifecycleScheduler:
    return providers.get_lifecycle_scheduler()


def get_admission_controller() -> AdmissionController:
    return providers.get_admission_controller()


def get_cache_facade() -> CacheFacade:
    return providers.get_cache_facade()
