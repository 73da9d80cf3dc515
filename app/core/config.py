import os
from functools import lru_cache

import requests
from pydantic_settings import BaseSettings

DOPPLER_SECRETS_URL = "https://api.doppler.com/v3/configs/config/secrets/download"

# Secrets aioapns can only read from disk: secret name -> file under CERT_DIR
APNS_SECRET_FILES = {
    "APNS_COMBINED_PEM": ("combined.pem", "APNS_CERT_PATH"),
    "APNS_AUTH_KEY_P8": ("apns_auth_key.p8", "APNS_AUTH_KEY_PATH"),
}


def _load_doppler_secrets() -> int:
    """Pull secrets from Doppler into os.environ before Settings is built.

    Signing material is read inline (SIGNER_CERT_PEM etc.), so only the APNs
    credentials are written out. Variables already set in the environment win.
    Returns the number of secrets fetched, 0 without DOPPLER_TOKEN.
    """
    token = os.getenv("DOPPLER_TOKEN")
    if not token:
        return 0

    try:
        response = requests.get(
            DOPPLER_SECRETS_URL,
            params={"format": "json"},
            auth=(token, ""),
            timeout=30,
        )
        response.raise_for_status()
        secrets = response.json()
    except Exception as e:
        print(f"Warning: Failed to load Doppler secrets: {e}")
        return 0

    for key, value in secrets.items():
        os.environ.setdefault(key, value)

    cert_dir = os.getenv("CERT_DIR", "certs")
    for secret_name, (filename, path_var) in APNS_SECRET_FILES.items():
        if not secrets.get(secret_name):
            continue
        os.makedirs(cert_dir, exist_ok=True)
        filepath = os.path.join(cert_dir, filename)
        with open(filepath, "w") as f:
            f.write(secrets[secret_name])
        os.chmod(filepath, 0o600)
        os.environ.setdefault(path_var, filepath)

    print(f"Loaded {len(secrets)} secrets from Doppler")
    return len(secrets)


_load_doppler_secrets()


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_secret_key: str = ""

    # Apple Developer
    apple_team_id: str = ""
    apple_pass_type_id: str = ""

    # Pass signing material: PEM text or base64, takes precedence over the paths
    signer_cert_pem: str = ""
    signer_key_pem: str = ""
    wwdr_pem: str = ""

    cert_path: str = "certs/signerCert.pem"
    key_path: str = "certs/signerKey.pem"
    wwdr_path: str = "certs/wwdr.pem"
    cert_password: str | None = None
    wwdr_expected_issuer: str = "Apple"

    # Seconds allowed for signing + packaging one archive
    signing_timeout_seconds: float = 10.0
    signing_workers: int = 4
    # Capped at signing_timeout_seconds; logos are fetched before signing
    logo_download_timeout_seconds: float = 3.0

    # Server
    base_url: str = "http://localhost:8000"
    pass_assets_dir: str = "pass_assets"
    # Secrets that must live on disk (APNs key) are written here
    cert_dir: str = "certs"

    # Balance engine
    balance_max_attempts: int = 5

    # APNs (token auth is preferred, the client certificate is the fallback)
    apns_use_sandbox: bool = False
    apns_key_id: str = ""
    apns_auth_key: str = ""
    apns_auth_key_path: str = "certs/apns_auth_key.p8"
    apns_cert_path: str = "certs/combined.pem"
    push_max_retries: int = 2
    push_retry_base_delay: float = 0.5

    # Rate limiting for the wallet web service
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max_requests: int = 100
    rate_limit_sweep_seconds: int = 60 * 60
    rate_limit_redis_url: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def get_web_service_url() -> str:
    """URL Apple Wallet prefixes to every web-service call for our passes."""
    return f"{settings.base_url.rstrip('/')}/wallet"


def get_pass_download_url(serial_number: str) -> str:
    return f"{settings.base_url.rstrip('/')}/passes/{serial_number}"
