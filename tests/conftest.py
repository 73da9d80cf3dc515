import pytest
from fastapi.testclient import TestClient

from app.core.rate_limit import FixedWindowRateLimiter
from app.services.auth_tokens import AuthTokenService
from app.services.balance import BalanceEngine
from app.services.certificate_provider import CertificateProvider
from app.services.apns import PushDispatcher
from app.services.pass_generator import PassGenerator
from app.services.wallets import AppleWalletService, PassCoordinator
from tests.helpers.certs import PASS_TYPE_ID, TEAM_ID, WEB_SERVICE_URL, make_chain
from tests.helpers.fake_supabase import FakeSupabase


@pytest.fixture(scope="session")
def cert_chain():
    """RSA keygen is slow; one chain serves the whole run."""
    return make_chain()


@pytest.fixture
def fake_db(monkeypatch):
    fake = FakeSupabase()
    monkeypatch.setattr("database.supabase_client.get_supabase_client", lambda: fake)
    return fake


@pytest.fixture
def certificate_provider(cert_chain, monkeypatch):
    provider = CertificateProvider(
        signer_cert=cert_chain.signer_cert_pem,
        signer_key=cert_chain.signer_key_pem,
        wwdr_cert=cert_chain.wwdr_pem,
    )
    provider.load()
    monkeypatch.setattr("app.services.certificate_provider._provider", provider)
    return provider


@pytest.fixture
def pass_generator(certificate_provider, tmp_path):
    assets_dir = tmp_path / "assets"
    assets_dir.mkdir()
    for name, content in {
        "icon.png": b"\x89PNG icon",
        "icon@2x.png": b"\x89PNG icon 2x",
        "logo.png": b"\x89PNG logo",
        "logo@2x.png": b"\x89PNG logo 2x",
    }.items():
        (assets_dir / name).write_bytes(content)

    return PassGenerator(
        team_id=TEAM_ID,
        pass_type_id=PASS_TYPE_ID,
        web_service_url=WEB_SERVICE_URL,
        certificate_provider=certificate_provider,
        assets_dir=assets_dir,
    )


@pytest.fixture
def seeded(fake_db):
    """A business with one card of each loyalty type and a customer."""
    business = fake_db.seed("businesses", name="Bean There", website="https://beanthere.example")
    customer = fake_db.seed("customers", name="Ada Lovelace", email="ada@example.com")
    stamps_card = fake_db.seed(
        "loyalty_cards",
        business_id=business["id"],
        name="Coffee Card",
        is_active=True,
        design={
            "loyaltyType": "stamps",
            "maxStamps": 10,
            "rewardDescription": "Free coffee",
            "backgroundColor": "#8b5a2b",
            "textColor": "#ffffff",
        },
    )
    points_card = fake_db.seed(
        "loyalty_cards",
        business_id=business["id"],
        name="Points Card",
        is_active=True,
        design={"loyaltyType": "points", "rewardThreshold": 100, "rewardDescription": "10% off"},
    )
    membership_card = fake_db.seed(
        "loyalty_cards",
        business_id=business["id"],
        name="Members Club",
        is_active=True,
        design={"loyaltyType": "membership"},
    )
    return {
        "business": business,
        "customer": customer,
        "stamps_card": stamps_card,
        "points_card": points_card,
        "membership_card": membership_card,
    }


@pytest.fixture
def auth_tokens(fake_db):
    return AuthTokenService()


@pytest.fixture
def apple_service(pass_generator, auth_tokens):
    service = AppleWalletService(pass_generator=pass_generator, auth_tokens=auth_tokens)
    yield service
    service.shutdown()


@pytest.fixture
def coordinator(apple_service, auth_tokens):
    return PassCoordinator(
        apple=apple_service,
        balance=BalanceEngine(max_attempts=5),
        push=PushDispatcher(client=None),
        auth_tokens=auth_tokens,
    )


@pytest.fixture
def test_app(apple_service, auth_tokens, coordinator):
    from app.api import deps
    from app.main import create_app

    application = create_app(rate_limiter=FixedWindowRateLimiter(max_requests=1000, window_seconds=900))
    application.dependency_overrides[deps.get_apple_wallet_service] = lambda: apple_service
    application.dependency_overrides[deps.get_auth_token_service] = lambda: auth_tokens
    application.dependency_overrides[deps.get_pass_coordinator] = lambda: coordinator
    return application


@pytest.fixture
def client(test_app):
    return TestClient(test_app)
