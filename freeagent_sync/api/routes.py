"""
FastAPI routes for the FreeAgent integration.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from http import HTTPStatus
from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from freeagent_sync.core.exceptions import (
    AccessDeniedError,
    ApiError,
    ConfigurationError,
    FreeAgentError,
    OAuthError,
    OAuthFailure,
    RateLimitError,
)
from freeagent_sync.dependencies import (
    get_access_policy,
    get_app_settings,
    get_current_principal,
    get_freeagent_config,
    get_invoice_service,
    get_mirror_store,
    get_oauth_manager,
    get_oauth_state_encoder,
    get_sync_engine,
)
from freeagent_sync.models.mirror import InvoiceFilters
from freeagent_sync.models.principal import Principal
from freeagent_sync.schemas import (
    AuthorizationStart,
    CacheClearResponse,
    CallbackResult,
    ConnectionStatus,
    InvoiceOut,
    SyncResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

STATE_COOKIE = "freeagent_oauth_state"

PrincipalDep = Annotated[Principal, Depends(get_current_principal)]


def http_error_for(exc: FreeAgentError) -> HTTPException:
    """Translate a package error into the matching HTTP status."""
    if isinstance(exc, AccessDeniedError):
        return HTTPException(status_code=HTTPStatus.FORBIDDEN, detail=str(exc))
    if isinstance(exc, OAuthError):
        if exc.reason is OAuthFailure.INVALID_CALLBACK:
            return HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc))
        return HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, RateLimitError):
        return HTTPException(status_code=HTTPStatus.TOO_MANY_REQUESTS, detail=str(exc))
    if isinstance(exc, ApiError):
        return HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc)
        )
    return HTTPException(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc))


def _require_admin(policy: Any, principal: Principal) -> None:
    if not policy.can_manage_connection(principal):
        raise HTTPException(
            status_code=HTTPStatus.FORBIDDEN,
            detail="Only administrators can manage the FreeAgent connection.",
        )


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/connect", status_code=HTTPStatus.OK)
async def start_oauth_flow(
    request: Request,
    principal: PrincipalDep,
    policy: Annotated[Any, Depends(get_access_policy)],
    service: Annotated[Any, Depends(get_invoice_service)],
    oauth: Annotated[Any, Depends(get_oauth_manager)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    settings: Annotated[Any, Depends(get_app_settings)],
    redirect_to: Optional[str] = Query(
        default=None,
        description="Optional URL to redirect back to once the connection is made.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the FreeAgent consent screen.",
    ),
) -> Response:
    """Kick off the OAuth flow with a signed state and a matching nonce cookie."""
    _require_admin(policy, principal)
    nonce = uuid.uuid4().hex
    try:
        state = state_encoder.encode(
            {
                "nonce": nonce,
                "owner_id": service.owner_for(principal),
                "redirect_to": redirect_to,
            }
        )
        authorization_url = oauth.build_authorization_url(state)
    except ConfigurationError as exc:
        logger.error("FreeAgent OAuth redirect failed", extra={"error": str(exc)})
        raise http_error_for(exc) from exc

    if redirect or _wants_html(request):
        response: Response = RedirectResponse(
            url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    else:
        response = JSONResponse(
            content=AuthorizationStart(
                authorization_url=authorization_url, state=state
            ).model_dump()
        )
    response.set_cookie(
        STATE_COOKIE,
        nonce,
        max_age=settings.security.state_ttl_seconds,
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/callback", status_code=HTTPStatus.OK)
async def handle_oauth_callback(
    request: Request,
    oauth: Annotated[Any, Depends(get_oauth_manager)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    settings: Annotated[Any, Depends(get_app_settings)],
    state: Optional[str] = Query(default=None, description="OAuth state token."),
    code: Optional[str] = Query(default=None, description="Authorization code."),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    """Validate the state, exchange the code and store the owner's token."""
    try:
        if not state:
            raise OAuthError.invalid_callback("missing state")
        state_data = state_encoder.decode(
            state, max_age=settings.security.state_ttl_seconds
        )
        nonce = request.cookies.get(STATE_COOKIE)
        if not nonce or nonce != state_data.get("nonce"):
            logger.warning("FreeAgent OAuth state mismatch")
            raise OAuthError.invalid_callback("state does not match this browser")
        owner_id = state_data.get("owner_id")
        if not owner_id:
            raise OAuthError.invalid_callback("state carries no owner")
        if error:
            logger.warning(
                "FreeAgent OAuth error",
                extra={"error": error, "description": error_description},
            )
            raise OAuthError.authorization_failed(error_description or error)
        if not code:
            raise OAuthError.invalid_callback("no authorization code received")

        await oauth.complete_authorization(code, owner_id)
    except FreeAgentError as exc:
        logger.error("FreeAgent OAuth callback failed", extra={"error": str(exc)})
        raise http_error_for(exc) from exc

    result = CallbackResult(owner_id=owner_id, redirect_to=state_data.get("redirect_to"))
    redirect_target = result.redirect_to or settings.frontend_base_url
    if redirect_target and (redirect or _wants_html(request)):
        response: Response = RedirectResponse(
            url=str(redirect_target), status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    else:
        response = JSONResponse(content=result.model_dump())
    response.delete_cookie(STATE_COOKIE)
    return response


@router.post("/disconnect", status_code=HTTPStatus.OK)
async def disconnect(
    principal: PrincipalDep,
    policy: Annotated[Any, Depends(get_access_policy)],
    service: Annotated[Any, Depends(get_invoice_service)],
    oauth: Annotated[Any, Depends(get_oauth_manager)],
) -> dict:
    _require_admin(policy, principal)
    owner_id = service.owner_for(principal)
    oauth.revoke(owner_id)
    return {"status": "disconnected", "owner_id": owner_id}


@router.get("/status", response_model=ConnectionStatus)
async def connection_status(
    principal: PrincipalDep,
    service: Annotated[Any, Depends(get_invoice_service)],
    oauth: Annotated[Any, Depends(get_oauth_manager)],
    sync_engine: Annotated[Any, Depends(get_sync_engine)],
    mirror: Annotated[Any, Depends(get_mirror_store)],
    config: Annotated[Any, Depends(get_freeagent_config)],
) -> ConnectionStatus:
    owner_id = service.owner_for(principal)
    token = oauth.stored_token(owner_id)
    return ConnectionStatus(
        owner_id=owner_id,
        connected=token is not None and token.is_valid(),
        environment=config.environment,
        expires_at=token.expires_at if token else None,
        stale={
            kind: sync_engine.is_stale(owner_id, kind)
            for kind in ("contacts", "invoices")
        },
        mirrored={
            kind: mirror.count(kind) for kind in ("contacts", "projects", "invoices")
        },
    )


@router.get("/invoices", response_model=List[InvoiceOut])
async def list_invoices(
    principal: PrincipalDep,
    policy: Annotated[Any, Depends(get_access_policy)],
    service: Annotated[Any, Depends(get_invoice_service)],
    statuses: Optional[List[str]] = Query(
        default=None, alias="status", description="Repeat to match several statuses."
    ),
    paid: bool = Query(default=False, description="Only paid invoices."),
    unpaid: bool = Query(
        default=False, description="Drop paid, cancelled and written off invoices."
    ),
    overdue: bool = Query(default=False, description="Only open invoices past due."),
    from_date: Optional[date] = Query(default=None, description="Earliest dated_on."),
    to_date: Optional[date] = Query(default=None, description="Latest dated_on."),
) -> List[InvoiceOut]:
    """Return the invoices visible to the caller, syncing first when stale."""
    if not policy.can_view_any(principal):
        raise HTTPException(
            status_code=HTTPStatus.FORBIDDEN,
            detail="No FreeAgent contact is linked to this account.",
        )
    filters = InvoiceFilters(
        statuses=statuses or [],
        paid=paid,
        unpaid=unpaid,
        overdue=overdue,
        from_date=from_date,
        to_date=to_date,
    )
    invoices = await service.list_invoices(principal, filters)
    return [InvoiceOut.from_invoice(invoice) for invoice in invoices]


@router.post("/sync", response_model=SyncResponse)
async def sync_invoices(
    principal: PrincipalDep,
    service: Annotated[Any, Depends(get_invoice_service)],
) -> SyncResponse:
    """Manually refresh the caller's invoices from FreeAgent."""
    try:
        stats = await service.sync_now(principal)
    except FreeAgentError as exc:
        raise http_error_for(exc) from exc
    return SyncResponse(
        owner_id=service.owner_for(principal),
        invoices=stats,
        synced_at=datetime.now(timezone.utc),
    )


@router.post("/cache/clear", response_model=CacheClearResponse)
async def clear_cache(
    principal: PrincipalDep,
    policy: Annotated[Any, Depends(get_access_policy)],
    service: Annotated[Any, Depends(get_invoice_service)],
    sync_engine: Annotated[Any, Depends(get_sync_engine)],
    all_owners: bool = Query(default=False, alias="all"),
) -> CacheClearResponse:
    _require_admin(policy, principal)
    if all_owners:
        removed = sync_engine.clear_all_caches()
        return CacheClearResponse(
            owners=sorted(removed), entries_removed=sum(removed.values())
        )
    owner_id = service.owner_for(principal)
    return CacheClearResponse(
        owners=[owner_id], entries_removed=sync_engine.clear_cache(owner_id)
    )


@router.get("/invoice/{invoice_id}/pdf")
async def download_invoice_pdf(
    invoice_id: int,
    principal: PrincipalDep,
    service: Annotated[Any, Depends(get_invoice_service)],
) -> Response:
    try:
        invoice, content = await service.download_pdf(principal, invoice_id)
    except FreeAgentError as exc:
        logger.error(
            "FreeAgent PDF download failed",
            extra={
                "invoice_id": invoice_id,
                "principal_id": principal.principal_id,
                "error": str(exc),
            },
        )
        raise http_error_for(exc) from exc

    filename = (
        f"invoice_{invoice.reference or invoice.id}_"
        f"{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.pdf"
    )
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        },
    )


__all__ = ["http_error_for", "router"]
