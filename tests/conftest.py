import sys
import os
import tempfile
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["BACKEND_URL"] = ""
os.environ["REALTIME_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "schoolboard-test-logs"))

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from schoolboard.core import backend as backend_module
from schoolboard.core.config import settings
from schoolboard.core.backend import MemoryBackend
from tests.helpers.seed import DEFAULT_USERS, seed_tables
import main


@pytest.fixture(scope="function")
def backend():
    return MemoryBackend(seed_tables())

@pytest.fixture(scope="function")
def client(backend, monkeypatch):
    monkeypatch.setattr(backend_module, "data_backend", backend)
    with TestClient(main.app) as test_client:
        yield test_client

@pytest.fixture
def make_token():
    def _make_token(user_id: str, role: str) -> str:
        payload = {
            "sub": user_id,
            "aud": settings.JWT_AUDIENCE,
            "role": "authenticated",
            "user_metadata": {"role": role},
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")
    return _make_token

@pytest.fixture
def token_for_role(make_token):
    def _create_token_for_role(role_name: str) -> str:
        return make_token(DEFAULT_USERS[role_name], role_name)
    return _create_token_for_role

@pytest.fixture
def auth_headers(token_for_role):
    def _auth_headers(role_name: str):
        return {"Authorization": f"Bearer {token_for_role(role_name)}"}
    return _auth_headers
