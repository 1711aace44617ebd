"""Consent API routes.

Each request gets its own :class:`ConsentService` built over the request's
cookies; the admin registry and consent log are shared across requests.
Cookies written or removed by the service are mirrored onto the response.
"""

import logging
import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response

from consentry.api.schemas import (
    CategorizeCookieRequest,
    ConsentAckResponse,
    ConsentDataResponse,
    ErrorResponse,
    ReportUnknownCookieRequest,
    SaveConsentRequest,
    SaveConsentResponse
)
from consentry.consent.audit_log import ConsentLogger
from consentry.consent.config import ConsentConfiguration, get_consent_config
from consentry.consent.errors import ConsentError
from consentry.consent.jar import InMemoryCookieJar, StoredCookie, root_domain
from consentry.consent.registry import CookieRegistry
from consentry.consent.service import ConsentService

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"

# Create router with tags for OpenAPI documentation
router = APIRouter(
    prefix="/consent",
    tags=["Consent"],
    responses={
        400: {"model": ErrorResponse, "description": "Bad Request"},
        403: {"model": ErrorResponse, "description": "Permission Denied"},
        422: {"model": ErrorResponse, "description": "Validation Error"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
        503: {"model": ErrorResponse, "description": "Consent Not Persisted"},
    }
)


# Shared across requests; replaced by an external store in larger deployments
_registry_instance: Optional[CookieRegistry] = None
_consent_logger_instance: Optional[ConsentLogger] = None


def get_config() -> ConsentConfiguration:
    """Dependency providing the consent configuration."""
    return get_consent_config()


def get_registry(config: ConsentConfiguration = Depends(get_config)) -> CookieRegistry:
    """Dependency providing the shared admin cookie registry."""
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = CookieRegistry(config.registry)
    return _registry_instance


def get_consent_logger() -> ConsentLogger:
    """Dependency providing the shared consent log."""
    global _consent_logger_instance
    if _consent_logger_instance is None:
        _consent_logger_instance = ConsentLogger()
    return _consent_logger_instance


def reset_shared_state() -> None:
    """Drop the shared registry and consent log."""
    global _registry_instance, _consent_logger_instance
    _registry_instance = None
    _consent_logger_instance = None


def build_service(
    request: Request,
    config: ConsentConfiguration,
    registry: CookieRegistry,
    consent_logger: Optional[ConsentLogger] = None
) -> ConsentService:
    """Consent service over the cookies of one request."""
    jar = InMemoryCookieJar.from_header(
        request.headers.get("cookie", ""),
        host=request.url.hostname or "localhost",
        secure=request.url.scheme == "https"
    )
    return ConsentService(
        jar,
        config=config,
        registry=registry,
        cookie_header=request.headers.get("cookie"),
        consent_logger=consent_logger
    )


def mirror_cookies(response: Response, jar: InMemoryCookieJar, incoming: List[StoredCookie]) -> None:
    """Emit Set-Cookie headers for cookies the service changed."""
    current = jar.list_cookies()
    current_ids = {id(cookie) for cookie in current}
    incoming_ids = {id(cookie) for cookie in incoming}

    for cookie in current:
        if id(cookie) in incoming_ids:
            continue
        response.set_cookie(
            cookie.name,
            cookie.value,
            max_age=cookie.max_age,
            path=cookie.path,
            domain=None if cookie.host_only else cookie.domain,
            secure=cookie.secure,
            samesite=(cookie.same_site or "lax").lower()
        )

    remaining = {cookie.name for cookie in current}
    root = root_domain(jar.host)
    for cookie in incoming:
        if id(cookie) in current_ids or cookie.name in remaining:
            continue
        response.delete_cookie(cookie.name, path=cookie.path)
        if root:
            response.delete_cookie(cookie.name, path=cookie.path, domain=root)


def is_admin(token: Optional[str], config: ConsentConfiguration) -> bool:
    if not token or not config.admin_token:
        return False
    return secrets.compare_digest(token, config.admin_token)


@router.post(
    "",
    response_model=SaveConsentResponse,
    summary="Save consent",
    description="""
    Persist the visitor's consent decision.

    The consent cookie is set on the response, cookies of categories that
    are not granted are expired, and the Consent Mode update payload for
    the decision is returned in `signals`.
    """
)
async def save_consent(
    body: SaveConsentRequest,
    http_request: Request,
    response: Response,
    config: ConsentConfiguration = Depends(get_config),
    registry: CookieRegistry = Depends(get_registry),
    consent_logger: ConsentLogger = Depends(get_consent_logger)
) -> SaveConsentResponse:
    request_id = getattr(http_request.state, "request_id", None)
    service = build_service(http_request, config, registry, consent_logger)
    incoming = service.jar.list_cookies()

    try:
        ack = service.save_consent(
            {"categories": body.categories},
            source=body.source,
            visitor_id=body.visitor_id,
            ip_address=http_request.client.host if http_request.client else None,
            user_agent=http_request.headers.get("user-agent")
        )
    except ConsentError:
        raise
    except Exception as e:
        logger.error(f"Failed to save consent: {e}", extra={"request_id": request_id}, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save consent")

    mirror_cookies(response, service.jar, incoming)

    updates = service.sink.consent_commands("update")
    report = service.engine.last_report
    return SaveConsentResponse(
        success=ack.success,
        message=ack.message,
        data=ack.data,
        signals=updates[-1][2] if updates else {},
        removed_cookies=report.deleted if report else []
    )


@router.get(
    "",
    response_model=ConsentDataResponse,
    summary="Get consent data",
    description="Return the stored consent record and the request's cookies, classified and grouped."
)
async def get_consent_data(
    http_request: Request,
    config: ConsentConfiguration = Depends(get_config),
    registry: CookieRegistry = Depends(get_registry)
) -> ConsentDataResponse:
    service = build_service(http_request, config, registry)
    data = service.get_consent_data()

    return ConsentDataResponse(
        decided=data.decided,
        record=data.record.model_dump(mode="json", by_alias=True) if data.record else None,
        consent_status=data.consent_status,
        cookies_present=data.cookies_present,
        cookies_blocked=data.cookies_blocked,
        groups=data.groups
    )


@router.post(
    "/unknown-cookies",
    response_model=ConsentAckResponse,
    summary="Report unknown cookie",
    description="Add an unclassified cookie to the admin registry for review."
)
async def report_unknown_cookie(
    body: ReportUnknownCookieRequest,
    http_request: Request,
    config: ConsentConfiguration = Depends(get_config),
    registry: CookieRegistry = Depends(get_registry)
) -> ConsentAckResponse:
    service = build_service(http_request, config, registry)
    ack = service.report_unknown_cookie(body.name, domain=body.domain)
    return ConsentAckResponse(**ack.model_dump())


@router.post(
    "/categorize",
    response_model=ConsentAckResponse,
    summary="Categorize cookie",
    description=f"Assign a category to a cookie. Requires the `{ADMIN_TOKEN_HEADER}` header."
)
async def categorize_cookie(
    body: CategorizeCookieRequest,
    http_request: Request,
    admin_token: Optional[str] = Header(default=None, alias=ADMIN_TOKEN_HEADER),
    config: ConsentConfiguration = Depends(get_config),
    registry: CookieRegistry = Depends(get_registry)
) -> ConsentAckResponse:
    request_id = getattr(http_request.state, "request_id", None)
    service = build_service(http_request, config, registry)

    ack = service.categorize_cookie(
        body.name,
        body.category,
        privileged=is_admin(admin_token, config),
        source=body.source,
        description=body.description
    )

    logger.info(f"Cookie {body.name} categorized as {body.category.value}", extra={"request_id": request_id})
    return ConsentAckResponse(**ack.model_dump())
