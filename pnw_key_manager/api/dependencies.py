"""
FastAPI dependencies: database session, session-token caller, rate limit and
the credential service.
"""

from typing import Iterator, Optional

import jwt
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..config import AppConfig
from ..constants import RateLimitType
from ..exceptions import AuthenticationError, ConfigurationError
from ..schemas.credential_schemas import Caller
from ..services.audit_service import RequestMeta
from ..services.caller_service import load_caller
from ..services.credential_service import CredentialService
from ..utils.rate_limit_utils import check_rate_limit

BEARER_PREFIX = "bearer "


def get_app_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_db_session(request: Request) -> Iterator[Session]:
    """One session per request, closed when the response is sent."""
    session = request.app.state.db_manager.new_session()
    try:
        yield session
    finally:
        session.close()


def decode_session_token(token: str, secret: Optional[str]) -> str:
    """
    Verify an HS256 session token and return its subject (the user id).

    Raises:
        ConfigurationError: If no JWT secret is configured
        AuthenticationError: If the token is invalid, expired or has no subject
    """
    if not secret:
        raise ConfigurationError("JWT_SECRET is not set", setting="security.jwt_secret")
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid session", cause=e) from e

    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise AuthenticationError("Invalid session")
    return user_id


def _session_token(request: Request, cookie_name: str) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX):].strip() or None
    return request.cookies.get(cookie_name) or None


def get_caller(
    request: Request,
    session: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_app_config),
) -> Caller:
    """Resolve the requesting user from the Bearer header or the session cookie."""
    token = _session_token(request, config.security.session_cookie_name)
    if not token:
        raise AuthenticationError("Login required")
    user_id = decode_session_token(token, config.security.jwt_secret)
    return load_caller(session, user_id)


def enforce_rate_limit(
    request: Request,
    caller: Caller = Depends(get_caller),
    config: AppConfig = Depends(get_app_config),
) -> None:
    """Count the request against the caller's window on a dedicated session."""
    if not config.rate_limit.enabled:
        return
    session = request.app.state.db_manager.new_session()
    try:
        check_rate_limit(session, caller.user_id, RateLimitType.USER, config.rate_limit)
    finally:
        session.close()


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_credential_service(
    request: Request, session: Session = Depends(get_db_session)
) -> CredentialService:
    return CredentialService(
        request.app.state.cipher, request.app.state.validator, session=session
    )
