"""Fixtures for pkl-proxy testing."""
from collections.abc import Generator

import flask
import pytest
import responses
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from flask.ctx import AppContext
from flask.testing import FlaskClient

from pklproxy.app import init_app
from pklproxy.auth import github as gh
from tests.helpers import API_URL, APP_ID, INSTALLATION_ID, mock_access_token


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    """Session fixture with a throwaway App private key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def public_key(rsa_key: rsa.RSAPrivateKey) -> rsa.RSAPublicKey:
    return rsa_key.public_key()


@pytest.fixture
def github_config(private_key_pem: str) -> gh.Config:
    return gh.Config.from_dict(
        {
            "app_id": APP_ID,
            "installation_id": INSTALLATION_ID,
            "private_key": private_key_pem,
            "api_url": API_URL,
        }
    )


@pytest.fixture
def token_manager(github_config: gh.Config) -> gh.TokenManager:
    manager = gh.TokenManager(github_config)
    manager.select_installation()
    return manager


@pytest.fixture
def app(token_manager: gh.TokenManager) -> flask.Flask:
    """Configured Flask app serving a single fixed installation."""
    return init_app(
        additional_config={"TESTING": True}, token_manager=token_manager
    )


@pytest.fixture
def app_context(app: flask.Flask) -> Generator:
    ctx = app.app_context()
    try:
        ctx.push()
        yield ctx
    finally:
        ctx.pop()


@pytest.fixture
def test_client(app_context: AppContext) -> FlaskClient:
    test_client: FlaskClient = app_context.app.test_client()
    return test_client


@pytest.fixture
def mocked_github() -> Generator[responses.RequestsMock, None, None]:
    """Mocked GitHub API, already able to mint installation tokens."""
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        mock_access_token(rsps)
        yield rsps
