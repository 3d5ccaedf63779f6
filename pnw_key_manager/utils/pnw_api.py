"""
Politics and War GraphQL client used to validate linked API keys.

Only read-only ``me`` / ``nations`` queries are issued. Upstream failures are
mapped onto the key validation error taxonomy; nothing is retried here, the
caller decides. The key is sent as the ``api_key`` query parameter, so request
exceptions (whose text embeds the URL) are never logged or attached verbatim.
"""

from typing import Any, Dict, Optional

import requests

from ..config import PnWApiConfig
from ..exceptions import (
    InvalidFormatError,
    InvalidOrExpiredKeyError,
    UnknownUpstreamError,
    UpstreamRateLimitedError,
    UpstreamUnavailableError,
    UsageCheckFailedError,
)
from ..schemas.credential_schemas import (
    AllianceIdentity,
    KeyPermissions,
    NationIdentity,
    UsageCounters,
    UsageSnapshot,
    ValidationResult,
)
from .encryption_utils import mask_secret
from .logger import get_logger

VALIDATION_QUERY = """
  query {
    me {
      requests
      max_requests
      permissions {
        nation_view_resources
        alliance_view_bank
        alliance_withdraw_bank
      }
    }
    nations(id: [self], first: 1) {
      data {
        id
        nation_name
        alliance_id
        alliance {
          id
          name
        }
      }
    }
  }
"""

USAGE_QUERY = """
  query {
    me {
      requests
      max_requests
    }
  }
"""

INVALID_KEY_PHRASES = ("Invalid API key", "Unauthorized")
RATE_LIMIT_PHRASES = ("Rate limit exceeded",)


def classify_upstream_error(message: str) -> Exception:
    """
    Map an upstream GraphQL error message onto the validation taxonomy.

    Upstream publishes no typed error codes, so known phrases are matched as
    substrings.
    """
    if any(phrase in message for phrase in INVALID_KEY_PHRASES):
        return InvalidOrExpiredKeyError()
    if any(phrase in message for phrase in RATE_LIMIT_PHRASES):
        return UpstreamRateLimitedError()
    return UnknownUpstreamError(f"API error: {message}")


class PnWApiClient:
    """Stateless validator for PnW API keys."""

    def __init__(self, config: PnWApiConfig, http_session: Optional[requests.Session] = None):
        """
        Args:
            config: Endpoint, timeouts and key length limits
            http_session: Optional requests session (tests pass a stub)
        """
        self.config = config
        self.http = http_session or requests.Session()
        self.logger = get_logger()

    def _post(self, api_key: str, query: str, timeout: float) -> requests.Response:
        return self.http.post(
            self.config.base_url,
            params={"api_key": api_key},
            json={"query": query},
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": self.config.user_agent,
            },
        )

    def _check_format(self, api_key: Any) -> None:
        if not api_key or not isinstance(api_key, str) or len(api_key) < self.config.min_key_length:
            raise InvalidFormatError(min_length=self.config.min_key_length)

    def _payload_or_raise(self, response: requests.Response) -> Dict[str, Any]:
        """Decode a response body, raising the matching taxonomy error for failures."""
        status = response.status_code
        if status == 429:
            raise UpstreamRateLimitedError(status_code_upstream=status)
        if status >= 500:
            raise UpstreamUnavailableError(status_code_upstream=status)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            if not isinstance(errors, list):
                raise UnknownUpstreamError(status_code_upstream=status)
            first = errors[0]
            message = first.get("message", "") if isinstance(first, dict) else str(first)
            raise classify_upstream_error(message)

        if status in (401, 403):
            raise InvalidOrExpiredKeyError()
        if status >= 400 or not isinstance(payload, dict):
            raise UnknownUpstreamError(status_code_upstream=status)

        return payload

    def validate(self, api_key: str) -> ValidationResult:
        """
        Confirm a key is live and fetch its nation, alliance, capabilities and usage.

        Raises:
            InvalidFormatError: Key too short (no network call is made)
            InvalidOrExpiredKeyError: Upstream rejected the key
            UpstreamRateLimitedError: Upstream quota exceeded
            UpstreamUnavailableError: 5xx, connection failure or timeout
            UnknownUpstreamError: Any other upstream error payload
        """
        self._check_format(api_key)
        masked = mask_secret(api_key)

        try:
            response = self._post(api_key, VALIDATION_QUERY, self.config.validation_timeout)
        except requests.Timeout as e:
            raise UpstreamUnavailableError(
                "Request timeout - Politics and War API is slow to respond", cause=e
            ) from e
        except requests.RequestException as e:
            raise UpstreamUnavailableError(
                "Unable to connect to Politics and War API", cause=e
            ) from e

        result = self._decode_validation(self._payload_or_raise(response))

        self.logger.info(
            "API key validated",
            extra={"masked_key": masked, "nation_id": result.identity.id},
        )
        return result

    def _decode_validation(self, payload: Dict[str, Any]) -> ValidationResult:
        try:
            return self._build_validation(payload)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise UnknownUpstreamError("Unexpected nation data from upstream", cause=e) from e

    def _build_validation(self, payload: Dict[str, Any]) -> ValidationResult:
        data = payload.get("data") or {}
        me = data.get("me")
        nations = (data.get("nations") or {}).get("data") or []
        if not me or not nations:
            raise UnknownUpstreamError("Unable to retrieve nation data")

        nation = nations[0]
        alliance = nation.get("alliance") or {}
        alliance_id = nation.get("alliance_id") or alliance.get("id")
        permissions = me.get("permissions") or {}

        return ValidationResult(
            identity=NationIdentity(id=int(nation["id"]), name=nation.get("nation_name") or ""),
            alliance=(
                AllianceIdentity(id=int(alliance_id), name=alliance.get("name"))
                if alliance_id and int(alliance_id) > 0
                else None
            ),
            capabilities=KeyPermissions(
                can_view_nation_resources=bool(permissions.get("nation_view_resources")),
                can_view_alliance_bank=bool(permissions.get("alliance_view_bank")),
                can_manage_alliance_bank=bool(permissions.get("alliance_withdraw_bank")),
            ),
            usage=UsageCounters(
                used=me.get("requests") or 0,
                max=me.get("max_requests") or self.config.default_max_requests,
            ),
        )

    def check_usage(self, api_key: str) -> UsageSnapshot:
        """
        Lightweight usage lookup.

        Raises:
            UsageCheckFailedError: On any transport or upstream error. Callers
                treat this as a degraded status, not a failure.
        """
        try:
            response = self._post(api_key, USAGE_QUERY, self.config.usage_timeout)
            payload = self._payload_or_raise(response)
            me = payload["data"]["me"]
            used = int(me.get("requests") or 0)
            max_requests = int(me.get("max_requests") or self.config.default_max_requests)
        except (requests.RequestException, KeyError, TypeError, ValueError) as e:
            raise UsageCheckFailedError(cause=e) from e
        except (
            InvalidOrExpiredKeyError,
            UpstreamRateLimitedError,
            UpstreamUnavailableError,
            UnknownUpstreamError,
        ) as e:
            raise UsageCheckFailedError(upstream_kind=e.kind) from e

        return UsageSnapshot.from_counters(used, max_requests)
