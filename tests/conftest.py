from __future__ import annotations

import copy
import dataclasses
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from ems.auth import SignInResult, auth_error, get_identity, get_identity_provider, get_ws_identity
from ems.config import Settings, get_settings
from ems.db import Document, Subscription, get_db
from ems.errors import StoreError
from ems.models import Identity

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _settings(**overrides) -> Settings:
    base = Settings(
        firebase_service_account_file=None,
        firebase_service_account_json=None,
        firebase_web_api_key="test-key",
        google_client_id=None,
        cors_origins=["http://localhost:3000"],
        env="test",
        super_admin_emails=["root@uol.edu.pk"],
        super_admin_departments=["Computer Science", "CS"],
        federated_email_domains=["student.uol.edu.pk", "uol.edu.pk"],
        ticker_interval_seconds=4.0,
        identity_toolkit_url="https://identitytoolkit.test/v1",
        request_timeout_seconds=5.0,
        log_level="INFO",
    )
    return dataclasses.replace(base, **overrides)


class _FakeWatch:
    def __init__(self, store: "FakeStore", listener):
        self._store = store
        self._listener = listener

    def unsubscribe(self) -> None:
        self._store.listeners.remove(self._listener)


class FakeStore:
    """In-memory stand-in for FirestoreStore.

    Listeners are called synchronously on every write, like a snapshot push.
    Put an operation name ("get", "set", "update", "query", "listen") in
    ``fail`` to make it raise StoreError.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = {}
        self.fail: set[str] = set()
        self.reads: list[tuple[str, str]] = []
        self.writes: list[tuple[str, str, str, dict]] = []
        self.listeners: list[tuple[str, dict | None, object]] = []

    def seed(self, collection: str, doc_id: str, data: dict) -> None:
        self.collections.setdefault(collection, {})[doc_id] = dict(data)

    def doc(self, collection: str, doc_id: str) -> dict | None:
        return self.collections.get(collection, {}).get(doc_id)

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise StoreError(f"{op} failed: unavailable")

    def _matches(self, data: dict, filters: dict | None) -> bool:
        return all(data.get(k) == v for k, v in (filters or {}).items())

    def _notify(self, collection: str) -> None:
        for listener in list(self.listeners):
            listen_collection, filters, callback = listener
            if listen_collection == collection:
                callback(self._select(collection, filters))

    def _select(self, collection: str, filters: dict | None) -> list[Document]:
        return [
            Document(doc_id, copy.deepcopy(data))
            for doc_id, data in self.collections.get(collection, {}).items()
            if self._matches(data, filters)
        ]

    def get(self, collection: str, doc_id: str) -> dict | None:
        self._check("get")
        self.reads.append((collection, doc_id))
        data = self.doc(collection, doc_id)
        return copy.deepcopy(data) if data is not None else None

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        self._check("set")
        self.writes.append(("set", collection, doc_id, dict(data)))
        self.seed(collection, doc_id, data)
        self._notify(collection)

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        self._check("update")
        existing = self.doc(collection, doc_id)
        if existing is None:
            raise StoreError(f"No document to update: {collection}/{doc_id}")
        self.writes.append(("update", collection, doc_id, dict(fields)))
        existing.update(fields)
        self._notify(collection)

    def query(self, collection: str, filters: dict | None = None) -> list[Document]:
        self._check("query")
        return self._select(collection, filters)

    def listen(self, collection: str, filters: dict | None, callback) -> Subscription:
        self._check("listen")
        listener = (collection, filters, callback)
        self.listeners.append(listener)
        callback(self._select(collection, filters))
        return Subscription(_FakeWatch(self, listener))


class FakeIdentityProvider:
    def __init__(self):
        self.accounts: dict[str, tuple[str, Identity]] = {}
        self.google_accounts: dict[str, tuple[dict, Identity]] = {}
        self.calls: list[str] = []
        self.signed_out: list[str] = []

    def add_account(self, identity: Identity, password: str) -> None:
        self.accounts[identity.email] = (password, identity)

    def add_google_account(self, id_token: str, identity: Identity) -> None:
        claims = {"email": identity.email, "email_verified": True, "sub": f"google-{identity.uid}"}
        self.google_accounts[id_token] = (claims, identity)

    def _result(self, identity: Identity) -> SignInResult:
        return SignInResult(
            identity=identity,
            id_token=f"id-token-{identity.uid}",
            refresh_token=f"refresh-{identity.uid}",
            expires_in=3600,
        )

    def sign_in_with_password(self, email: str, password: str) -> SignInResult:
        self.calls.append("sign_in_with_password")
        if email not in self.accounts:
            raise auth_error("user-not-found")
        expected, identity = self.accounts[email]
        if password != expected:
            raise auth_error("wrong-password")
        return self._result(identity)

    def verify_google_id_token(self, token: str) -> dict:
        self.calls.append("verify_google_id_token")
        if token not in self.google_accounts:
            raise auth_error("federated-sign-in-failed")
        return dict(self.google_accounts[token][0])

    def sign_in_with_google(self, id_token: str, access_token: str | None = None) -> SignInResult:
        self.calls.append("sign_in_with_google")
        if id_token not in self.google_accounts:
            raise auth_error("federated-sign-in-failed")
        return self._result(self.google_accounts[id_token][1])

    def sign_out(self, uid: str) -> None:
        self.calls.append("sign_out")
        self.signed_out.append(uid)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_settings():
    return _settings


@pytest.fixture
def settings() -> Settings:
    return _settings()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def client(store, identity_provider, settings):
    from ems.main import app

    app.dependency_overrides[get_db] = lambda: store
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_ws_identity] = lambda: None
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def login_as(client):
    from ems.main import app

    def _login_as(identity: Identity) -> None:
        app.dependency_overrides[get_identity] = lambda: identity
        app.dependency_overrides[get_ws_identity] = lambda: identity

    return _login_as
