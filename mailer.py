"""
mailer.py
Outbound email through the Microsoft Graph sendMail API.

Two sign-in modes:
- service account (username/password grant) sending as that user
- client credentials sending as the club's shared mailbox
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import requests

import config

logger = logging.getLogger(__name__)

TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
SEND_URL = "https://graph.microsoft.com/v1.0/users/{user}/sendMail"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

# Refresh tokens this many seconds before they expire
EXPIRY_BUFFER_SECONDS = 300


class MailerNotConfigured(Exception):
    pass


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None


class TokenCache:
    """Holds one access token until shortly before it expires."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0

    def get(self) -> str | None:
        if self._token and self._expires_at > self._clock() + EXPIRY_BUFFER_SECONDS:
            return self._token
        return None

    def put(self, token: str, expires_in: float) -> None:
        self._token = token
        self._expires_at = self._clock() + expires_in

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0


class GraphMailer:
    def __init__(
        self,
        tenant_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        service_user: str | None = None,
        service_password: str | None = None,
        sender: str = config.CLUB_EMAIL,
        cache: TokenCache | None = None,
        session: requests.Session | None = None,
        timeout: float = 30,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.service_user = service_user
        self.service_password = service_password
        self.sender = sender
        self.cache = cache or TokenCache()
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_config(cls, **kwargs) -> "GraphMailer":
        return cls(
            tenant_id=config.AZURE_TENANT_ID,
            client_id=config.AZURE_CLIENT_ID,
            client_secret=config.AZURE_CLIENT_SECRET,
            service_user=config.AZURE_SERVICE_USER,
            service_password=config.AZURE_SERVICE_PASSWORD,
            **kwargs,
        )

    @property
    def uses_service_account(self) -> bool:
        return bool(self.service_user and self.service_password)

    @property
    def is_configured(self) -> bool:
        if not (self.tenant_id and self.client_id):
            return False
        return self.uses_service_account or bool(self.client_secret)

    def _token_request(self) -> dict[str, str]:
        if self.uses_service_account:
            data = {
                "client_id": self.client_id,
                "scope": f"{GRAPH_SCOPE} offline_access",
                "username": self.service_user,
                "password": self.service_password,
                "grant_type": "password",
            }
            if self.client_secret:
                data["client_secret"] = self.client_secret
            return data
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": GRAPH_SCOPE,
            "grant_type": "client_credentials",
        }

    def access_token(self) -> str:
        token = self.cache.get()
        if token:
            return token
        resp = self.session.post(
            TOKEN_URL.format(tenant=self.tenant_id),
            data=self._token_request(),
            timeout=self.timeout,
        )
        if not resp.ok:
            detail = resp.text
            try:
                body = resp.json()
                detail = body.get("error_description") or body.get("error") or detail
            except ValueError:
                pass
            raise RuntimeError(f"Token error ({resp.status_code}): {detail}")
        body = resp.json()
        self.cache.put(body["access_token"], float(body.get("expires_in", 3600)))
        return body["access_token"]

    def send(self, to: str, subject: str, html: str) -> SendResult:
        """Send one HTML email. Failures come back as SendResult, not exceptions."""
        if not self.is_configured:
            raise MailerNotConfigured(
                "Set AZURE_TENANT_ID/AZURE_CLIENT_ID and either AZURE_SERVICE_USER/PASSWORD or AZURE_CLIENT_SECRET"
            )
        try:
            token = self.access_token()
        except (requests.RequestException, RuntimeError) as e:
            logger.error("Could not get Graph token: %s", e)
            return SendResult(False, str(e))

        send_as = self.service_user if self.uses_service_account else self.sender
        message = {
            "subject": subject,
            "body": {"contentType": "HTML", "content": html},
            "toRecipients": [{"emailAddress": {"address": to}}],
            "from": {"emailAddress": {"name": config.CLUB_NAME, "address": self.sender}},
        }
        try:
            resp = self.session.post(
                SEND_URL.format(user=send_as),
                json={"message": message, "saveToSentItems": True},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("sendMail to %s failed: %s", to, e)
            return SendResult(False, str(e))

        if not resp.ok:
            detail = resp.text
            try:
                err = resp.json().get("error", {})
                detail = err.get("message") or err.get("code") or detail
            except ValueError:
                pass
            return SendResult(False, f"SendMail failed ({resp.status_code}): {detail}")
        return SendResult(True)
