from __future__ import annotations

from dataclasses import dataclass
import logging
from urllib.parse import urlencode

import firebase_admin
import requests
from fastapi import Depends, Header, HTTPException, Query, WebSocketException, status
from firebase_admin import auth, credentials
from firebase_admin.exceptions import FirebaseError
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from .config import Settings, get_settings
from .errors import IdentityProviderError
from .models import Identity

logger = logging.getLogger(__name__)

_app_initialized = False

DEFAULT_AUTH_ERROR = "Login failed"

AUTH_ERROR_MESSAGES = {
    "user-not-found": "No user found with this email.",
    "wrong-password": "Incorrect password.",
    "invalid-credential": "Invalid email or password.",
    "user-disabled": "This account has been disabled.",
    "too-many-requests": "Too many attempts. Please try again later.",
    "network-request-failed": "Could not reach the sign-in service. Please try again.",
    "federated-sign-in-failed": "Google Sign In Failed. Please try again.",
    "federated-sign-in-cancelled": "Sign in cancelled.",
    "domain-not-allowed": "Only UOL emails allowed.",
    "sign-out-failed": "Could not sign out. Please try again.",
}

# Identity Toolkit REST error codes -> the codes above.
_REST_ERROR_CODES = {
    "EMAIL_NOT_FOUND": "user-not-found",
    "INVALID_PASSWORD": "wrong-password",
    "INVALID_LOGIN_CREDENTIALS": "invalid-credential",
    "INVALID_EMAIL": "invalid-credential",
    "INVALID_IDP_RESPONSE": "invalid-credential",
    "USER_DISABLED": "user-disabled",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "too-many-requests",
}


def auth_error(code: str) -> IdentityProviderError:
    return IdentityProviderError(code, AUTH_ERROR_MESSAGES.get(code, DEFAULT_AUTH_ERROR))


def init_firebase() -> None:
    global _app_initialized
    if _app_initialized:
        return

    settings = get_settings()

    if settings.firebase_service_account_json is not None:
        cred = credentials.Certificate(settings.firebase_service_account_json)
        firebase_admin.initialize_app(cred)
        _app_initialized = True
        return

    if settings.firebase_service_account_file:
        cred = credentials.Certificate(settings.firebase_service_account_file)
        firebase_admin.initialize_app(cred)
        _app_initialized = True
        return

    raise RuntimeError(
        "Firebase Admin credentials not configured. Set FIREBASE_SERVICE_ACCOUNT_FILE or FIREBASE_SERVICE_ACCOUNT_JSON"
    )


def identity_from_token(token: str) -> Identity:
    try:
        init_firebase()
    except Exception as e:
        logger.exception("Firebase Admin initialization failed")
        raise HTTPException(
            status_code=500,
            detail="Server auth is not configured (Firebase Admin init failed).",
        ) from e

    try:
        decoded = auth.verify_id_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if not decoded.get("uid"):
        raise HTTPException(status_code=401, detail="Token missing uid")

    return Identity.from_claims(decoded)


def get_identity(authorization: str | None = Header(default=None)) -> Identity:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid Authorization header")

    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing Bearer token")

    return identity_from_token(token)


def get_ws_identity(token: str | None = Query(default=None)) -> Identity | None:
    """None when the handshake carries no valid token; the endpoint closes the socket.

    Server-side failures close the handshake with 1011 instead.
    """
    # Browsers cannot set headers on a WebSocket handshake, so the ID token rides in the query.
    if not token:
        return None
    try:
        return identity_from_token(token)
    except HTTPException as e:
        if e.status_code != 401:
            raise WebSocketException(code=status.WS_1011_INTERNAL_ERROR, reason=e.detail) from e
        logger.info(f"Rejected console handshake: {e.detail}")
        return None


def require_auth(identity: Identity = Depends(get_identity)) -> Identity:
    return identity


@dataclass(frozen=True)
class SignInResult:
    identity: Identity
    id_token: str
    refresh_token: str
    expires_in: int


class IdentityProvider:
    """Firebase Auth as seen by the login flow.

    Password and Google sign-in go through the Identity Toolkit REST API so the
    server can hand tokens back to the client; sign-out revokes the user's
    refresh tokens through the Admin SDK.
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.settings = settings
        self.session = session or requests.Session()

    def _post(self, method: str, payload: dict, failure_code: str) -> dict:
        if not self.settings.firebase_web_api_key:
            raise RuntimeError("FIREBASE_WEB_API_KEY is required for sign-in")

        url = f"{self.settings.identity_toolkit_url}/accounts:{method}"
        try:
            resp = self.session.post(
                url,
                params={"key": self.settings.firebase_web_api_key},
                json=payload,
                timeout=self.settings.request_timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Identity Toolkit {method} request failed: {e}")
            raise auth_error("network-request-failed") from e

        if resp.status_code != 200:
            try:
                raw = resp.json().get("error", {}).get("message", "")
            except ValueError:
                raw = ""
            # Messages look like "TOO_MANY_ATTEMPTS_TRY_LATER : Access to this account ..."
            rest_code = raw.split(" ", 1)[0].strip()
            code = _REST_ERROR_CODES.get(rest_code, failure_code)
            logger.info(f"Identity Toolkit {method} rejected: {rest_code or resp.status_code}")
            raise auth_error(code)

        return resp.json()

    def _result(self, body: dict) -> SignInResult:
        identity = identity_from_token(body["idToken"])
        return SignInResult(
            identity=identity,
            id_token=body["idToken"],
            refresh_token=body.get("refreshToken", ""),
            expires_in=int(body.get("expiresIn", 3600)),
        )

    def sign_in_with_password(self, email: str, password: str) -> SignInResult:
        body = self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
            failure_code="login-failed",
        )
        return self._result(body)

    def verify_google_id_token(self, token: str) -> dict:
        try:
            return google_id_token.verify_oauth2_token(
                token,
                google_requests.Request(session=self.session),
                audience=self.settings.google_client_id,
            )
        except ValueError as e:
            logger.info(f"Google ID token rejected: {e}")
            raise auth_error("federated-sign-in-failed") from e

    def sign_in_with_google(self, id_token: str, access_token: str | None = None) -> SignInResult:
        post_body = {"id_token": id_token, "providerId": "google.com"}
        if access_token:
            post_body["access_token"] = access_token
        body = self._post(
            "signInWithIdp",
            {
                "postBody": urlencode(post_body),
                "requestUri": "http://localhost",
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
            failure_code="federated-sign-in-failed",
        )
        return self._result(body)

    def sign_out(self, uid: str) -> None:
        try:
            init_firebase()
            auth.revoke_refresh_tokens(uid)
        except FirebaseError as e:
            logger.exception(f"Revoking sessions for {uid} failed")
            raise auth_error("sign-out-failed") from e
        logger.info(f"Revoked sessions for {uid}")


def get_identity_provider(settings: Settings = Depends(get_settings)) -> IdentityProvider:
    return IdentityProvider(settings)
