"""Shared FastAPI dependencies."""

from functools import lru_cache

from fastapi import Request
from pydantic import BaseModel

from printquota.core.config import get_settings
from printquota.core.exceptions import ForbiddenError, UnauthorizedError
from printquota.core.logging import bind_student
from printquota.core.security import load_access_token, verify_gateway_authorization
from printquota.db.init import get_client
from printquota.db.store import BillingStore, MongoBillingStore
from printquota.services.converters import build_converter
from printquota.services.page_counter import PageCounter
from printquota.storage.base import get_storage


class Principal(BaseModel):
    student_id: str
    role: str = "student"


async def get_current_student(request: Request) -> Principal:
    """Dependency: verify the signed bearer token issued by the auth service."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Not authenticated")
    payload = load_access_token(token.strip())
    if not payload:
        raise UnauthorizedError("Invalid or expired token")
    student_id = payload.get("student_id")
    if not student_id:
        raise UnauthorizedError("Invalid token")
    bind_student(str(student_id))
    return Principal(student_id=str(student_id), role=payload.get("role", "student"))


async def require_admin(request: Request) -> Principal:
    principal = await get_current_student(request)
    if principal.role != "admin":
        raise ForbiddenError("Admin only")
    return principal


async def require_gateway_auth(request: Request) -> None:
    """Dependency: SePay webhook API key; a server without a key rejects every call."""
    if not verify_gateway_authorization(request.headers.get("Authorization"), get_settings().sepay_api_key):
        raise UnauthorizedError("Invalid gateway credentials")


def get_store() -> BillingStore:
    return MongoBillingStore(get_client())


@lru_cache
def get_page_counter() -> PageCounter:
    return PageCounter(get_storage(), build_converter(get_settings()))
