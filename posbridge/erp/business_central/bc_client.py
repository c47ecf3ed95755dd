"""
Business Central OData v2.0 client.

Thin HTTP layer over the Business Central API: auth header (OAuth client
credentials with a cached token, or Basic), paged GETs following
@odata.nextLink, and plain requests. Every call carries a timeout; transport
errors are raised as UpstreamError.
"""

import base64
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from ...core.errors import UpstreamError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
TOKEN_SCOPE = "https://api.businesscentral.dynamics.com/.default"

# Refresh the cached token this many seconds before it expires
TOKEN_EXPIRY_MARGIN = 60


def odata_quote(value: Any = "") -> str:
    """Quote a string literal for an OData $filter expression."""
    return "'" + str(value).replace("'", "''") + "'"


class BusinessCentralClient:
    """HTTP client for one Business Central tenant/environment/company."""

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        self.auth_mode = str(config.get('auth') or 'oauth').lower()
        self.tenant_id = config.get('tenant_id') or ''
        self.company_id = config.get('company_id') or ''
        self.environment = config.get('environment') or 'Production'
        self.region = config.get('region') or 'api.businesscentral.dynamics.com'
        self.client_id = config.get('client_id') or ''
        self.client_secret = config.get('client_secret') or ''
        self.username = config.get('username') or ''
        self.password = config.get('password') or ''
        self.timeout = float(config.get('timeout_seconds') or 15)

        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._token_exp = 0.0

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def has_credentials(self) -> bool:
        if self.auth_mode == 'basic':
            return bool(self.username and self.password)
        return bool(self.client_id and self.client_secret)

    def is_configured(self) -> bool:
        return bool(self.tenant_id and self.company_id and self.has_credentials())

    @property
    def base_url(self) -> str:
        return f"https://{self.region}/v2.0/{self.tenant_id}/{self.environment}/api/v2.0"

    @property
    def company_path(self) -> str:
        return f"companies({self.company_id})"

    # =========================================================================
    # AUTH
    # =========================================================================

    def get_auth_header(self) -> str:
        if self.auth_mode == 'basic':
            raw = f"{self.username}:{self.password}".encode('utf-8')
            return f"Basic {base64.b64encode(raw).decode('ascii')}"

        now = time.time()
        if self._token and now < self._token_exp - TOKEN_EXPIRY_MARGIN:
            return f"Bearer {self._token}"

        try:
            r = self.session.post(
                TOKEN_URL.format(tenant=self.tenant_id),
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": TOKEN_SCOPE,
                    "grant_type": "client_credentials",
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"OAuth token request failed: {e}", step="auth")

        if not r.ok:
            raise UpstreamError(f"OAuth token error {r.status_code}", step="auth", status=r.status_code)

        data = r.json()
        self._token = data.get("access_token")
        self._token_exp = now + float(data.get("expires_in") or 3600)
        logger.info("Business Central access token refreshed")
        return f"Bearer {self._token}"

    # =========================================================================
    # REQUESTS
    # =========================================================================

    def request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None,
                step: Optional[str] = None) -> requests.Response:
        """
        Send a request relative to the API base URL.

        Returns:
            requests.Response: The raw response (status not checked)

        Raises:
            UpstreamError: If the request could not be sent
        """
        headers = {
            "Accept": "application/json",
            "Authorization": self.get_auth_header(),
        }
        if json_body is not None:
            headers["Content-Type"] = "application/json"

        url = f"{self.base_url}/{path}"
        try:
            return self.session.request(method, url, json=json_body, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise UpstreamError(f"Business Central timeout after {self.timeout}s", step=step)
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Business Central request failed: {e}", step=step)

    def paged_get(self, path_with_query: str) -> List[Dict[str, Any]]:
        """
        GET a collection, following @odata.nextLink until exhausted.

        Raises:
            UpstreamError: On any non-2xx page
        """
        next_url: Optional[str] = f"{self.base_url}/{path_with_query}"
        rows: List[Dict[str, Any]] = []

        while next_url:
            headers = {"Accept": "application/json", "Authorization": self.get_auth_header()}
            try:
                r = self.session.get(next_url, headers=headers, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise UpstreamError(f"BC GET failed: {e}")

            if not r.ok:
                raise UpstreamError(f"BC GET {r.status_code} {r.text}", status=r.status_code)

            data = r.json()
            if isinstance(data.get("value"), list):
                rows.extend(data["value"])
            next_url = data.get("@odata.nextLink")

        logger.debug(f"BC GET {path_with_query.split('?')[0]}: {len(rows)} rows")
        return rows

    def resolve_item_id(self, item_number: str) -> Optional[str]:
        """Look up the item GUID for an item number."""
        query = (f"{self.company_path}/items?$top=1&$select=id,number"
                 f"&$filter=number eq {odata_quote(item_number)}")
        rows = self.paged_get(query)
        return rows[0].get("id") if rows else None
