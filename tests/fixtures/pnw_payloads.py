"""
Canned Politics and War GraphQL responses and a stub HTTP transport.
"""

from typing import Any, Dict, List, Optional
from unittest.mock import Mock


def pnw_response(payload: Any, status_code: int = 200) -> Mock:
    """A stand-in for ``requests.Response``."""
    response = Mock()
    response.status_code = status_code
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def validation_payload(
    nation_id: int = 42,
    nation_name: str = "Testland",
    used: int = 10,
    max_requests: Optional[int] = 2000,
    alliance_id: int = 0,
    alliance_name: Optional[str] = None,
    permissions: Optional[Dict[str, bool]] = None,
) -> Dict[str, Any]:
    return {
        "data": {
            "me": {
                "requests": used,
                "max_requests": max_requests,
                "permissions": permissions
                or {
                    "nation_view_resources": True,
                    "alliance_view_bank": False,
                    "alliance_withdraw_bank": False,
                },
            },
            "nations": {
                "data": [
                    {
                        "id": str(nation_id),
                        "nation_name": nation_name,
                        "alliance_id": str(alliance_id),
                        "alliance": (
                            {"id": str(alliance_id), "name": alliance_name}
                            if alliance_id
                            else None
                        ),
                    }
                ]
            },
        }
    }


def usage_payload(used: int = 10, max_requests: int = 2000) -> Dict[str, Any]:
    return {"data": {"me": {"requests": used, "max_requests": max_requests}}}


def error_payload(*messages: str) -> Dict[str, Any]:
    return {"errors": [{"message": m} for m in messages]}


class StubPnWTransport:
    """
    Stub for ``requests.Session`` answering validation and usage queries.

    Set ``validation`` / ``usage`` to a response (or an exception to raise);
    every call is recorded in ``calls``.
    """

    def __init__(self, validation=None, usage=None):
        self.validation = validation or pnw_response(validation_payload())
        self.usage = usage or pnw_response(usage_payload())
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, params=None, json=None, timeout=None, headers=None):
        self.calls.append({"url": url, "params": params, "json": json, "timeout": timeout})
        answer = self.validation if "nations" in json["query"] else self.usage
        if isinstance(answer, Exception):
            raise answer
        return answer
