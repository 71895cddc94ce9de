"""FORJ API client."""

from datetime import datetime
from typing import Optional

import requests


class ForjAPIError(Exception):
    """Non-2xx response from the FORJ API."""

    def __init__(self, status_code: int, code: Optional[str], detail: str):
        super().__init__(f"{status_code} {code or 'error'}: {detail}")
        self.status_code = status_code
        self.code = code
        self.detail = detail


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


class ForjClient:
    """Client for FORJ API."""

    def __init__(self, api_key: Optional[str] = None, base_url: str = "http://localhost:8000", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        if api_key:
            self.session.headers.update({"x-api-key": api_key})

    def _request(self, method: str, path: str, **kwargs):
        response = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        if not response.ok:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise ForjAPIError(response.status_code, body.get("code"), body.get("detail") or response.text)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Forges

    def create_forge(self, owner_id: str) -> dict:
        return self._request("POST", "/v1/forges", json={"owner_id": owner_id})

    def list_forges(self, owner_id: Optional[str] = None, state: Optional[str] = None) -> list:
        params = {k: v for k, v in {"owner_id": owner_id, "state": state}.items() if v}
        return self._request("GET", "/v1/forges", params=params)

    def get_forge(self, forge_id: str) -> dict:
        return self._request("GET", f"/v1/forges/{forge_id}")

    def transition(self, forge_id: str, target_state: str) -> dict:
        """Advance one step or roll back to an earlier state."""
        return self._request("POST", f"/v1/forges/{forge_id}/transition", json={"target_state": target_state})

    def rollback(self, forge_id: str) -> dict:
        return self._request("POST", f"/v1/forges/{forge_id}/rollback")

    def delete_forge(self, forge_id: str) -> None:
        self._request("DELETE", f"/v1/forges/{forge_id}")

    # Audit

    def list_audit_events(self, **filters) -> list:
        params = {k: _iso(v) for k, v in filters.items() if v is not None}
        return self._request("GET", "/v1/audit", params=params)

    def append_audit_event(self, action: str, entity_id: Optional[str] = None, metadata: Optional[dict] = None) -> dict:
        payload = {"action": action, "entity_id": entity_id, "metadata": metadata or {}}
        return self._request("POST", "/v1/audit", json=payload)

    def verify_audit_chain(self) -> dict:
        """``{"valid": bool, "broken_at_index": int | None, ...}``"""
        return self._request("GET", "/v1/audit/verify")

    # Certificates

    def issue_certificate(self, forge_id: str) -> dict:
        return self._request("POST", f"/v1/forges/{forge_id}/certificate")

    def list_certificates(self, entity_id: Optional[str] = None, status: Optional[str] = None) -> list:
        params = {k: v for k, v in {"entity_id": entity_id, "status": status}.items() if v}
        return self._request("GET", "/v1/certificates", params=params)

    def get_certificate(self, certificate_id: str) -> dict:
        return self._request("GET", f"/v1/certificates/{certificate_id}")

    def revoke_certificate(self, certificate_id: str, reason: str) -> dict:
        return self._request("POST", f"/v1/certificates/{certificate_id}/revoke", json={"reason": reason})

    def verify_code(self, code: str) -> Optional[dict]:
        """Public lookup; None for unknown or malformed codes."""
        try:
            return self._request("GET", f"/v1/verify/{code}")
        except ForjAPIError as e:
            if e.status_code == 404:
                return None
            raise

    def get_jwks(self) -> dict:
        return self._request("GET", "/v1/keys/jwks.json")

    # Licenses

    def create_license(
        self,
        digital_twin_id: str,
        grantee_id: str,
        usage_type: str,
        territories: list[str],
        valid_until: datetime,
        valid_from: Optional[datetime] = None,
        max_downloads: Optional[int] = None,
    ) -> dict:
        payload = {
            "digital_twin_id": digital_twin_id,
            "grantee_id": grantee_id,
            "usage_type": usage_type,
            "territories": territories,
            "valid_from": _iso(valid_from),
            "valid_until": _iso(valid_until),
            "max_downloads": max_downloads,
        }
        return self._request("POST", "/v1/licenses", json=payload)

    def list_licenses(self, digital_twin_id: Optional[str] = None, grantee_id: Optional[str] = None) -> list:
        params = {k: v for k, v in {"digital_twin_id": digital_twin_id, "grantee_id": grantee_id}.items() if v}
        return self._request("GET", "/v1/licenses", params=params)

    def get_license(self, license_id: str) -> dict:
        return self._request("GET", f"/v1/licenses/{license_id}")

    def record_usage(self, license_id: str) -> dict:
        return self._request("POST", f"/v1/licenses/{license_id}/usage")

    def revoke_license(self, license_id: str, reason: str) -> dict:
        return self._request("POST", f"/v1/licenses/{license_id}/revoke", json={"reason": reason})

    # System

    def get_stats(self) -> dict:
        return self._request("GET", "/v1/stats")
