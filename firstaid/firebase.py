"""Identity service backed by Firebase REST APIs and Brevo email.

Accounts go through the Identity Toolkit API, verification codes are
Firestore documents carrying an ``expiresAt`` timestamp, and codes are
mailed with Brevo's transactional email endpoint.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx

from .alerts import EmergencyContact, contacts_from_document, contacts_to_document
from .config import Settings, get_settings
from .identity import (
    DeliveryError,
    EmailAlreadyInUse,
    IdentityError,
    IdentityService,
    IdentityUser,
    InvalidCode,
    InvalidCredentials,
    ProviderError,
    RegistrationError,
    UnknownAccount,
)

logger = logging.getLogger(__name__)

BAD_LOGIN = {"EMAIL_NOT_FOUND", "INVALID_PASSWORD", "INVALID_LOGIN_CREDENTIALS", "USER_DISABLED", "INVALID_EMAIL"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_code(response: httpx.Response) -> str:
    try:
        message = response.json().get("error", {}).get("message", "")
    except ValueError:
        return ""
    # "WEAK_PASSWORD : Password should be at least 6 characters"
    return message.split(" : ")[0].strip()


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class FirebaseIdentityService(IdentityService):
    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self.clock = clock
        self.current_user: Optional[IdentityUser] = None
        self._id_token: Optional[str] = None

    # transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.http_timeout, transport=self.transport)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("request timeout: %s %s", method, url.split("?")[0])
            raise IdentityError("request timed out") from e
        except httpx.HTTPError as e:
            logger.warning("request failed: %s %s: %s", method, url.split("?")[0], e)
            raise IdentityError(str(e)) from e

    async def _toolkit(self, endpoint: str, payload: Dict[str, Any]) -> httpx.Response:
        if not self.settings.firebase_api_key:
            raise IdentityError("firebase_api_key is not configured")
        url = f"{self.settings.identity_base_url}/accounts:{endpoint}"
        return await self._request("POST", url, params={"key": self.settings.firebase_api_key}, json=payload)

    def _document_url(self, collection: str, doc_id: str) -> str:
        if not self.settings.firebase_project_id:
            raise IdentityError("firebase_project_id is not configured")
        return (
            f"{self.settings.firestore_base_url}/projects/{self.settings.firebase_project_id}"
            f"/databases/(default)/documents/{collection}/{quote(doc_id, safe='')}"
        )

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._id_token}"} if self._id_token else {}

    def _adopt(self, data: Dict[str, Any], fallback_email: str = "") -> IdentityUser:
        self._id_token = data.get("idToken")
        user = IdentityUser(
            uid=data["localId"],
            email=data.get("email") or fallback_email,
            display_name=data.get("displayName") or None,
        )
        self.current_user = user
        return user

    # accounts

    async def sign_in(self, email: str, password: str) -> IdentityUser:
        r = await self._toolkit("signInWithPassword", {"email": email, "password": password, "returnSecureToken": True})
        if r.status_code != 200:
            code = _error_code(r)
            logger.info("sign-in rejected: %s", code or r.status_code)
            if code in BAD_LOGIN:
                raise InvalidCredentials(code)
            raise IdentityError(code or f"HTTP {r.status_code}")
        return self._adopt(r.json(), email)

    async def sign_in_with_provider(self, provider_token: str) -> IdentityUser:
        payload = {
            "postBody": f"id_token={provider_token}&providerId=google.com",
            "requestUri": "http://localhost",
            "returnSecureToken": True,
            "returnIdpCredential": True,
        }
        r = await self._toolkit("signInWithIdp", payload)
        if r.status_code != 200:
            raise ProviderError(_error_code(r) or f"HTTP {r.status_code}")
        return self._adopt(r.json())

    async def create_user(self, email: str, password: str, display_name: str) -> IdentityUser:
        r = await self._toolkit("signUp", {"email": email, "password": password, "returnSecureToken": True})
        if r.status_code != 200:
            code = _error_code(r)
            if code == "EMAIL_EXISTS":
                raise EmailAlreadyInUse(email)
            raise RegistrationError(code or f"HTTP {r.status_code}")
        user = self._adopt({**r.json(), "displayName": display_name}, email)
        r = await self._toolkit("update", {"idToken": self._id_token, "displayName": display_name})
        if r.status_code != 200:
            raise RegistrationError(f"display name update failed: {_error_code(r)}")
        now = self.clock().isoformat()
        profile = {
            "fields": {
                "id": {"stringValue": user.uid},
                "fullname": {"stringValue": display_name},
                "email": {"stringValue": email},
                "createdAt": {"stringValue": now},
                "lastLoginAt": {"stringValue": now},
            }
        }
        r = await self._request(
            "PATCH",
            self._document_url(self.settings.users_collection, user.uid),
            json=profile,
            headers=self._auth_headers(),
        )
        if r.status_code != 200:
            raise RegistrationError(f"profile write failed: HTTP {r.status_code}")
        logger.info("created account %s", user.uid)
        return user

    async def reset_password(self, email: str) -> None:
        r = await self._toolkit("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})
        if r.status_code != 200:
            code = _error_code(r)
            if code in ("EMAIL_NOT_FOUND", "INVALID_EMAIL"):
                raise UnknownAccount(email)
            raise IdentityError(code or f"HTTP {r.status_code}")

    async def reauthenticate(self, email: str, password: str) -> None:
        await self.sign_in(email, password)

    async def delete_account(self) -> None:
        if self.current_user is None or not self._id_token:
            raise IdentityError("no signed-in user")
        uid = self.current_user.uid
        r = await self._request(
            "DELETE", self._document_url(self.settings.users_collection, uid), headers=self._auth_headers()
        )
        if r.status_code not in (200, 404):
            raise IdentityError(f"profile delete failed: HTTP {r.status_code}")
        r = await self._toolkit("delete", {"idToken": self._id_token})
        if r.status_code != 200:
            code = _error_code(r)
            if code in ("INVALID_ID_TOKEN", "CREDENTIAL_TOO_OLD_LOGIN_AGAIN"):
                raise InvalidCredentials(code)
            raise IdentityError(code or f"HTTP {r.status_code}")
        logger.info("deleted account %s", uid)
        self.current_user = None
        self._id_token = None

    async def record_login(self, uid: str) -> None:
        r = await self._request(
            "PATCH",
            self._document_url(self.settings.users_collection, uid),
            params={"updateMask.fieldPaths": "lastLoginAt"},
            json={"fields": {"lastLoginAt": {"stringValue": self.clock().isoformat()}}},
            headers=self._auth_headers(),
        )
        if r.status_code != 200:
            raise IdentityError(f"profile update failed: HTTP {r.status_code}")

    async def sign_out(self) -> None:
        self.current_user = None
        self._id_token = None

    # verification codes

    async def store_verification_code(self, email: str, code: str) -> None:
        expires = self.clock() + timedelta(seconds=self.settings.verification_code_ttl)
        doc = {
            "fields": {
                "email": {"stringValue": email},
                "code": {"stringValue": code},
                "expiresAt": {"timestampValue": expires.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")},
            }
        }
        r = await self._request(
            "PATCH",
            self._document_url(self.settings.verification_collection, email.lower()),
            json=doc,
            headers=self._auth_headers(),
        )
        if r.status_code != 200:
            raise IdentityError(f"storing verification code failed: HTTP {r.status_code}")

    async def dispatch_verification_code(self, email: str, code: str) -> None:
        if not self.settings.brevo_api_key:
            raise DeliveryError("brevo_api_key is not configured")
        payload = {
            "sender": {"name": self.settings.sender_name, "email": self.settings.sender_email},
            "to": [{"email": email}],
            "subject": f"Your {self.settings.sender_name} verification code",
            "htmlContent": (
                f"<p>Your verification code is <strong>{code}</strong>.</p>"
                f"<p>It expires in {self.settings.verification_code_ttl // 60} minutes.</p>"
            ),
        }
        r = await self._request(
            "POST",
            f"{self.settings.brevo_base_url}/smtp/email",
            json=payload,
            headers={"api-key": self.settings.brevo_api_key, "accept": "application/json"},
        )
        if r.status_code not in (200, 201, 202):
            logger.warning("brevo rejected message: HTTP %s", r.status_code)
            raise DeliveryError(f"HTTP {r.status_code}")

    async def verify_code(self, code: str, email: Optional[str] = None) -> None:
        email = email or (self.current_user.email if self.current_user else None)
        if not email:
            raise InvalidCode("no pending verification")
        url = self._document_url(self.settings.verification_collection, email.lower())
        r = await self._request("GET", url, headers=self._auth_headers())
        if r.status_code == 404:
            raise InvalidCode("no code on record")
        if r.status_code != 200:
            raise IdentityError(f"reading verification code failed: HTTP {r.status_code}")
        fields = r.json().get("fields", {})
        stored = fields.get("code", {}).get("stringValue")
        expires_at = fields.get("expiresAt", {}).get("timestampValue")
        if stored != code:
            raise InvalidCode("mismatch")
        if not expires_at or _parse_timestamp(expires_at) <= self.clock():
            raise InvalidCode("expired")
        r = await self._request("DELETE", url, headers=self._auth_headers())
        if r.status_code not in (200, 404):
            logger.warning("could not delete used verification code: HTTP %s", r.status_code)

    # emergency contacts

    def _contacts_url(self, uid: str) -> str:
        return self._document_url(f"{self.settings.users_collection}/{uid}/emergency_contacts", "contacts")

    async def load_emergency_contacts(self) -> List[EmergencyContact]:
        if self.current_user is None:
            return []
        r = await self._request("GET", self._contacts_url(self.current_user.uid), headers=self._auth_headers())
        if r.status_code == 404:
            return []
        if r.status_code != 200:
            logger.warning("loading emergency contacts failed: HTTP %s", r.status_code)
            return []
        return contacts_from_document(r.json())

    async def save_emergency_contacts(self, contacts: List[EmergencyContact]) -> None:
        if self.current_user is None:
            raise IdentityError("no signed-in user")
        r = await self._request(
            "PATCH",
            self._contacts_url(self.current_user.uid),
            json=contacts_to_document(contacts),
            headers=self._auth_headers(),
        )
        if r.status_code != 200:
            raise IdentityError(f"saving emergency contacts failed: HTTP {r.status_code}")
