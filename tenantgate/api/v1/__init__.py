"""V1 API router aggregation."""

from fastapi import APIRouter

from tenantgate.api.v1.accounts import router as accounts_router
from tenantgate.api.v1.api_keys import router as api_keys_router
from tenantgate.api.v1.audit_log import router as audit_log_router
from tenantgate.api.v1.auth import router as auth_router
from tenantgate.api.v1.members import router as members_router
from tenantgate.api.v1.projects import router as projects_router
from tenantgate.api.v1.system import router as system_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(auth_router)
v1_router.include_router(accounts_router)
v1_router.include_router(members_router)
v1_router.include_router(projects_router)
v1_router.include_router(api_keys_router)
v1_router.include_router(audit_log_router)
v1_router.include_router(system_router)
