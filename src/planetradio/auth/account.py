import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from loguru import logger

from planetradio.api.client import USER_AGENT
from planetradio.errors import AuthError


LOGIN_OK_STATUS = 601
JWT_COOKIE_NAME = "jwt-radio-uk-sso-uk_radio"


@dataclass
class CsrfPair:
    name: str
    value: str

    def header_value(self) -> str:
        return json.dumps({"csrf_name": self.name, "csrf_value": self.value}, separators=(",", ":"))


@dataclass
class AccountAuthResult:
    session_token: str
    csrf_value: str
    claims: Dict[str, Any]


def decode_jwt_claims(token: str) -> Dict[str, Any]:
    """Decode the payload of a three-part JWT without verifying it."""
    parts = (token or "").split(".")
    if len(parts) != 3:
        raise ValueError("token is not a three-part JWT")
    payload_b64 = parts[1]
    pad = "=" * (-len(payload_b64) % 4)
    payload_raw = base64.urlsafe_b64decode(payload_b64 + pad)
    payload = json.loads(payload_raw.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("JWT payload is not an object")
    return payload


class PlanetRadioAccountAuth:
    """Account login against the Planet Radio SSO endpoint.

    Flow:
      - POST process-account/ (empty) -> X-CSRF-Token header + cookies
      - POST process-account/ (login form + CSRF pair) -> status 601 + JWT cookie

    Cookies from the first step ride along on the second through the shared
    ``requests.Session``.
    """

    ACCOUNT_URL = "https://account.planetradio.co.uk/ajax/process-account/"

    def __init__(self, session: Optional[requests.Session] = None, *, account_url: Optional[str] = None, timeout: float = 20.0) -> None:
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self.account_url = account_url or self.ACCOUNT_URL
        self.timeout = timeout

    def fetch_csrf(self) -> CsrfPair:
        try:
            r = self.session.post(self.account_url, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise AuthError(f"CSRF request failed: {exc}") from exc

        raw = r.headers.get("X-CSRF-Token")
        if not raw:
            raise AuthError("Could not find CSRF token in headers")
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise AuthError(f"Invalid CSRF token format: {exc}") from exc
        if not isinstance(data, dict) or not data.get("csrf_name") or not data.get("csrf_value"):
            raise AuthError("Invalid CSRF token format")
        logger.debug("Received CSRF token")
        return CsrfPair(name=str(data["csrf_name"]), value=str(data["csrf_value"]))

    def login(self, username: str, password: str, csrf: CsrfPair) -> AccountAuthResult:
        form = {
            "processmode": "login",
            "emailfield": username,
            "passwordfield": password,
            "authMethod": "native",
            "csrf_name": csrf.name,
            "csrf_value": csrf.value,
        }
        try:
            r = self.session.post(
                self.account_url,
                data=form,
                headers={"X-CSRF-Token": csrf.header_value()},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as exc:
            raise AuthError(f"Login request failed: {exc}") from exc

        status = data.get("status") if isinstance(data, dict) else None
        if status != LOGIN_OK_STATUS:
            raise AuthError(f"Login failed with status {status!r}")

        token = None
        for c in r.cookies:
            if c.name == JWT_COOKIE_NAME and c.value and "deleted" not in c.value:
                token = c.value
                break
        if not token:
            raise AuthError("Could not find valid JWT cookie in response")

        try:
            claims = decode_jwt_claims(token)
        except ValueError as exc:
            raise AuthError(f"Failed to parse JWT token: {exc}") from exc

        return AccountAuthResult(session_token=token, csrf_value=csrf.value, claims=claims)

    def authenticate(self, username: str, password: str) -> AccountAuthResult:
        csrf = self.fetch_csrf()
        return self.login(username, password, csrf)
