"""
HTTP routes for linking, inspecting and removing PnW API keys.

Every route requires a valid session and counts against the caller's rate limit.
Failures are raised as BaseError subclasses and rendered by the app's handlers.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..constants import OwnerKind
from ..schemas.credential_schemas import (
    Caller,
    CredentialStatus,
    LinkRequest,
    LinkResult,
    StatusOverview,
    UnlinkResult,
    ValidateRequest,
    ValidationReport,
)
from ..services.audit_service import RequestMeta
from ..services.credential_service import CredentialService
from .dependencies import (
    enforce_rate_limit,
    get_caller,
    get_credential_service,
    get_request_meta,
)

router = APIRouter(dependencies=[Depends(enforce_rate_limit)])


@router.post("/link", response_model=LinkResult)
def link_api_key(
    body: LinkRequest,
    caller: Caller = Depends(get_caller),
    service: CredentialService = Depends(get_credential_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    return service.link(caller, body, request_meta=meta)


@router.get("/status", response_model=CredentialStatus, response_model_exclude_none=True)
def get_api_key_status(
    owner_kind: OwnerKind = Query(OwnerKind.USER, alias="ownerKind"),
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    alliance_slug: Optional[str] = Query(None, alias="allianceSlug"),
    caller: Caller = Depends(get_caller),
    service: CredentialService = Depends(get_credential_service),
):
    return service.status(caller, owner_kind, owner_id, alliance_slug)


@router.get("/overview", response_model=StatusOverview, response_model_exclude_none=True)
def get_api_key_overview(
    caller: Caller = Depends(get_caller),
    service: CredentialService = Depends(get_credential_service),
):
    return service.overview(caller)


@router.delete("/unlink", response_model=UnlinkResult)
def unlink_api_key(
    owner_kind: OwnerKind = Query(OwnerKind.USER, alias="ownerKind"),
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    alliance_slug: Optional[str] = Query(None, alias="allianceSlug"),
    caller: Caller = Depends(get_caller),
    service: CredentialService = Depends(get_credential_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    return service.unlink(caller, owner_kind, owner_id, alliance_slug, request_meta=meta)


@router.post("/validate", response_model=ValidationReport)
def validate_api_key(
    body: ValidateRequest,
    service: CredentialService = Depends(get_credential_service),
):
    return service.validate(body)
