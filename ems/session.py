"""Role resolution and routing for a freshly authenticated identity.

Checks run strictly in this order and the first match wins:

1. the identity's email is a configured super-admin address;
2. a document exists in ``admin/{uid}`` (its contents do not matter);
3. the ``users/{uid}`` profile, which may be missing (first Google login
   creates it, a password login without one is a zombie account) or may
   belong to a password user who has not verified their email yet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .auth import IdentityProvider, SignInResult, auth_error
from .config import Settings
from .db import SERVER_TIMESTAMP
from .errors import CredentialValidationError
from .lifecycle import CancellationToken
from .models import (
    COLLECTION_ADMIN,
    COLLECTION_USERS,
    AdminRecord,
    Identity,
    Role,
    UserProfile,
)
from .notices import Notice, Severity

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    STUDENT_ACTIVE = "student_active"
    STUDENT_ONBOARDING = "student_onboarding"
    BLOCKED_UNVERIFIED = "blocked_unverified"
    ZOMBIE_NO_RECORD = "zombie_no_record"


class Outcome(str, Enum):
    NAVIGATE = "navigate"
    SIGN_OUT = "sign_out"


class Route(str, Enum):
    ADMIN_DASHBOARD = "admin_dashboard"
    STUDENT_DASHBOARD = "student_dashboard"
    ONBOARDING = "onboarding"


WELCOME_ADMIN = Notice("Welcome Admin!", Severity.SUCCESS)
WELCOME = Notice("Welcome!", Severity.SUCCESS)
ONBOARDING_NOTICE = Notice("Welcome! Please complete your profile.", Severity.SUCCESS)
VERIFY_EMAIL = Notice("Please verify your email address first.", Severity.WARNING)
ACCOUNT_NOT_FOUND = Notice("Account not found. Please Sign Up.", Severity.ERROR)


@dataclass
class Preferences:
    """Per-session settings picked up while resolving the session."""

    dark_mode: bool | None = None


@dataclass
class SessionContext:
    identity: Identity
    role: Role | None = None
    preferences: Preferences = field(default_factory=Preferences)


@dataclass
class Resolution:
    state: SessionState
    outcome: Outcome
    context: SessionContext
    notice: Notice
    route: Route | None = None


def email_domain_allowed(email: str | None, domains: list[str]) -> bool:
    if not email or "@" not in email:
        return False
    domain = email.rsplit("@", 1)[1].lower()
    return domain in domains


class SessionResolver:
    def __init__(self, store, identity_provider: IdentityProvider, settings: Settings):
        self.store = store
        self.identity_provider = identity_provider
        self.settings = settings

    def is_super_admin_email(self, email: str | None) -> bool:
        return bool(email) and email.strip().lower() in self.settings.super_admin_emails

    def resolve(
        self,
        identity: Identity,
        federated: bool | None = None,
        token: CancellationToken | None = None,
    ) -> Resolution:
        """Decide where ``identity`` goes.

        Raises ``StoreError`` on store failures and ``IdentityProviderError``
        when a federated identity outside the allowed domains has no profile.
        """
        if federated is None:
            federated = identity.is_federated
        token = token or CancellationToken()
        context = SessionContext(identity=identity)

        if self.is_super_admin_email(identity.email):
            logger.warning(f"Super-admin email bypass used by {identity.uid}")
            context.role = Role.ADMIN
            return self._navigate(SessionState.SUPER_ADMIN, context, Route.ADMIN_DASHBOARD)

        admin_data = self.store.get(COLLECTION_ADMIN, identity.uid)
        token.raise_if_cancelled()
        if admin_data is not None:
            record = AdminRecord.from_document(identity.uid, admin_data)
            context.role = Role.ADMIN
            context.preferences.dark_mode = record.is_dark_mode
            return self._navigate(SessionState.ADMIN, context, Route.ADMIN_DASHBOARD)

        user_data = self.store.get(COLLECTION_USERS, identity.uid)
        token.raise_if_cancelled()

        if user_data is None:
            if federated:
                if not email_domain_allowed(identity.email, self.settings.federated_email_domains):
                    logger.info(f"Refused onboarding for {identity.uid} from {identity.email!r}")
                    raise auth_error("domain-not-allowed")
                return self._create_onboarding_profile(context, token)
            logger.warning(f"Zombie account {identity.uid}: signed in without a profile")
            return self._sign_out(SessionState.ZOMBIE_NO_RECORD, context, ACCOUNT_NOT_FOUND, token)

        profile = UserProfile.from_document(identity.uid, user_data)
        context.role = profile.role
        context.preferences.dark_mode = profile.is_dark_mode

        if not federated and profile.role != Role.ADMIN and not identity.email_verified:
            return self._sign_out(SessionState.BLOCKED_UNVERIFIED, context, VERIFY_EMAIL, token)

        if profile.role == Role.ADMIN:
            return self._navigate(SessionState.ADMIN, context, Route.ADMIN_DASHBOARD)
        return self._navigate(SessionState.STUDENT_ACTIVE, context, Route.STUDENT_DASHBOARD)

    def _create_onboarding_profile(self, context: SessionContext, token: CancellationToken) -> Resolution:
        profile = UserProfile.for_federated_signup(context.identity)
        document = profile.to_signup_document()
        document["createdAt"] = SERVER_TIMESTAMP
        self.store.set(COLLECTION_USERS, profile.uid, document)
        token.raise_if_cancelled()

        logger.info(f"Created onboarding profile for {profile.uid}")
        context.role = profile.role
        return Resolution(
            state=SessionState.STUDENT_ONBOARDING,
            outcome=Outcome.NAVIGATE,
            context=context,
            notice=ONBOARDING_NOTICE,
            route=Route.ONBOARDING,
        )

    def _navigate(self, state: SessionState, context: SessionContext, route: Route) -> Resolution:
        logger.info(f"Routing {context.identity.uid} ({state.value}) to {route.value}")
        notice = WELCOME_ADMIN if route == Route.ADMIN_DASHBOARD else WELCOME
        return Resolution(
            state=state,
            outcome=Outcome.NAVIGATE,
            context=context,
            notice=notice,
            route=route,
        )

    def _sign_out(
        self,
        state: SessionState,
        context: SessionContext,
        notice: Notice,
        token: CancellationToken,
    ) -> Resolution:
        self.identity_provider.sign_out(context.identity.uid)
        token.raise_if_cancelled()
        logger.info(f"Signed out {context.identity.uid} ({state.value})")
        return Resolution(state=state, outcome=Outcome.SIGN_OUT, context=context, notice=notice)

    def is_admin(self, identity: Identity) -> bool:
        """Same precedence as ``resolve``, without side effects."""
        if self.is_super_admin_email(identity.email):
            return True
        if self.store.get(COLLECTION_ADMIN, identity.uid) is not None:
            return True
        user_data = self.store.get(COLLECTION_USERS, identity.uid)
        if user_data is None:
            return False
        return UserProfile.from_document(identity.uid, user_data).role == Role.ADMIN


@dataclass
class LoginResult:
    resolution: Resolution
    sign_in: SignInResult | None = None


class LoginFlow:
    """One login attempt: credentials in, resolved session out.

    ``state`` moves from unauthenticated to authenticating, then to the
    resolved state, or back to unauthenticated when the attempt fails.
    Nothing is retried; the user submits again.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        resolver: SessionResolver,
        token: CancellationToken | None = None,
    ):
        self.identity_provider = identity_provider
        self.resolver = resolver
        self.token = token or CancellationToken()
        self.state = SessionState.UNAUTHENTICATED

    def sign_in_with_password(self, email: str, password: str) -> LoginResult:
        email = (email or "").strip()
        password = (password or "").strip()
        if not email or not password:
            raise CredentialValidationError("Please enter email and password")

        self.state = SessionState.AUTHENTICATING
        try:
            result = self.identity_provider.sign_in_with_password(email, password)
            self.token.raise_if_cancelled()
            return self._finish(result, federated=False)
        except Exception:
            self.state = SessionState.UNAUTHENTICATED
            raise

    def sign_in_with_google(self, id_token: str | None, access_token: str | None = None) -> LoginResult:
        if not id_token:
            raise auth_error("federated-sign-in-cancelled")

        self.state = SessionState.AUTHENTICATING
        try:
            claims = self.identity_provider.verify_google_id_token(id_token)
            self.token.raise_if_cancelled()
            if not email_domain_allowed(claims.get("email"), self.resolver.settings.federated_email_domains):
                logger.info(f"Rejected Google sign-in from {claims.get('email')!r}")
                raise auth_error("domain-not-allowed")

            result = self.identity_provider.sign_in_with_google(id_token, access_token)
            self.token.raise_if_cancelled()
            return self._finish(result, federated=True)
        except Exception:
            self.state = SessionState.UNAUTHENTICATED
            raise

    def _finish(self, result: SignInResult, federated: bool) -> LoginResult:
        resolution = self.resolver.resolve(result.identity, federated=federated, token=self.token)
        self.state = resolution.state
        if resolution.outcome == Outcome.SIGN_OUT:
            return LoginResult(resolution=resolution)
        return LoginResult(resolution=resolution, sign_in=result)
