"""
Publishing configuration and Google credential loading.

Three modes:

* ``service-account`` — long-lived service-account key, taken from (in order)
  GOOGLE_CREDENTIALS_JSON, GOOGLE_CREDENTIALS_JSON_PATH,
  GOOGLE_CREDENTIALS_BASE64 or GOOGLE_APPLICATION_CREDENTIALS.
* ``oauth`` — a user token previously stored on disk by the ``oauth-token``
  CLI command; needs all GOOGLE_OAUTH_* settings.
* ``none`` — publishing disabled.

Configuration problems raise PublishConfigurationError and are never retried.
"""
from __future__ import annotations

import base64
import dataclasses
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from google.auth.credentials import Credentials
from google.oauth2 import credentials as oauth_credentials
from google.oauth2 import service_account

from lessonpack.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

DOCS_SCOPE = "https://www.googleapis.com/auth/documents"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive.file"
SCOPES = [DOCS_SCOPE, DRIVE_SCOPE]

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

_SERVICE_ACCOUNT_KEYS = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "client_id",
    "token_uri",
)


class PublishConfigurationError(Exception):
    """Missing or malformed publishing credentials."""


@dataclasses.dataclass(frozen=True)
class OAuthClientConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    token_path: str


@dataclasses.dataclass(frozen=True)
class PublishConfig:
    mode: str  # "service-account" | "oauth" | "none"
    export_folder_id: Optional[str] = None
    service_account: Optional[Dict[str, Any]] = None
    oauth: Optional[OAuthClientConfig] = None
    source: Optional[str] = None  # where the credential material came from

    @property
    def enabled(self) -> bool:
        return self.mode != "none"


DISABLED = PublishConfig(mode="none")


# ---------------------------------------------------------------------------
# Service-account material
# ---------------------------------------------------------------------------

def _normalize_private_key(private_key: str) -> str:
    if "\n" in private_key:
        return private_key
    return private_key.replace("\\n", "\n")


def parse_service_account(raw: str) -> Dict[str, Any]:
    """Validate service-account JSON and normalise its private key."""
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise PublishConfigurationError(f"Service-account JSON is malformed: {exc}") from exc

    if not isinstance(data, dict):
        raise PublishConfigurationError("Service-account JSON must be an object")
    missing = [key for key in _SERVICE_ACCOUNT_KEYS if not isinstance(data.get(key), str)]
    if missing:
        raise PublishConfigurationError(
            f"Service-account JSON is missing fields: {', '.join(missing)}"
        )
    if data["type"] != "service_account":
        raise PublishConfigurationError(
            f"Expected type 'service_account', got {data['type']!r}"
        )

    data = dict(data)
    data["private_key"] = _normalize_private_key(data["private_key"])
    return data


def _read_credentials_file(path: str, setting_name: str) -> str:
    resolved = Path(path).expanduser().resolve()
    if not resolved.is_file():
        raise PublishConfigurationError(
            f'Expected {setting_name} to point to an existing file, but "{resolved}" was not found.'
        )
    return resolved.read_text(encoding="utf-8")


def _load_service_account(cfg: Settings) -> Optional[tuple]:
    if cfg.GOOGLE_CREDENTIALS_JSON:
        return parse_service_account(cfg.GOOGLE_CREDENTIALS_JSON), "GOOGLE_CREDENTIALS_JSON"

    if cfg.GOOGLE_CREDENTIALS_JSON_PATH:
        raw = _read_credentials_file(cfg.GOOGLE_CREDENTIALS_JSON_PATH, "GOOGLE_CREDENTIALS_JSON_PATH")
        return parse_service_account(raw), "GOOGLE_CREDENTIALS_JSON_PATH"

    if cfg.GOOGLE_CREDENTIALS_BASE64:
        try:
            decoded = base64.b64decode(cfg.GOOGLE_CREDENTIALS_BASE64).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise PublishConfigurationError(
                f"GOOGLE_CREDENTIALS_BASE64 is not valid base64: {exc}"
            ) from exc
        return parse_service_account(decoded), "GOOGLE_CREDENTIALS_BASE64"

    if cfg.GOOGLE_APPLICATION_CREDENTIALS:
        raw = _read_credentials_file(
            cfg.GOOGLE_APPLICATION_CREDENTIALS, "GOOGLE_APPLICATION_CREDENTIALS"
        )
        return parse_service_account(raw), "GOOGLE_APPLICATION_CREDENTIALS"

    return None


def load_publish_config(cfg: Optional[Settings] = None) -> PublishConfig:
    """Resolve the publishing mode from settings."""
    cfg = cfg or default_settings
    folder = cfg.GOOGLE_EXPORT_FOLDER_ID or None

    loaded = _load_service_account(cfg)
    if loaded is not None:
        info, source = loaded
        return PublishConfig(
            mode="service-account",
            export_folder_id=folder,
            service_account=info,
            source=source,
        )

    if (
        cfg.GOOGLE_OAUTH_CLIENT_ID
        and cfg.GOOGLE_OAUTH_CLIENT_SECRET
        and cfg.GOOGLE_OAUTH_REDIRECT_URI
        and cfg.GOOGLE_OAUTH_TOKEN_PATH
    ):
        return PublishConfig(
            mode="oauth",
            export_folder_id=folder,
            oauth=OAuthClientConfig(
                client_id=cfg.GOOGLE_OAUTH_CLIENT_ID,
                client_secret=cfg.GOOGLE_OAUTH_CLIENT_SECRET,
                redirect_uri=cfg.GOOGLE_OAUTH_REDIRECT_URI,
                token_path=str(Path(cfg.GOOGLE_OAUTH_TOKEN_PATH).expanduser().resolve()),
            ),
            source="GOOGLE_OAUTH_TOKEN_PATH",
        )

    return DISABLED


# ---------------------------------------------------------------------------
# google-auth credentials
# ---------------------------------------------------------------------------

def build_credentials(config: PublishConfig) -> Optional[Credentials]:
    """google-auth credentials for *config*, or ``None`` when disabled."""
    if config.mode == "none":
        return None

    if config.mode == "service-account":
        try:
            return service_account.Credentials.from_service_account_info(
                config.service_account, scopes=SCOPES
            )
        except ValueError as exc:
            raise PublishConfigurationError(
                f"Service-account key could not be loaded: {exc}"
            ) from exc

    oauth = config.oauth
    if oauth is None:
        raise PublishConfigurationError("OAuth mode selected without client configuration")

    token_path = Path(oauth.token_path)
    if not token_path.is_file():
        raise PublishConfigurationError(
            f"OAuth token file not found at {token_path}. "
            "Generate one with: python -m lessonpack.cli oauth-token"
        )
    try:
        tokens = json.loads(token_path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise PublishConfigurationError(f"OAuth token file is malformed: {exc}") from exc

    if not tokens.get("refresh_token") and not tokens.get("access_token"):
        raise PublishConfigurationError(
            f"OAuth token file {token_path} holds neither an access nor a refresh token"
        )

    return oauth_credentials.Credentials(
        token=tokens.get("access_token") or tokens.get("token"),
        refresh_token=tokens.get("refresh_token"),
        token_uri=GOOGLE_TOKEN_URI,
        client_id=oauth.client_id,
        client_secret=oauth.client_secret,
        scopes=SCOPES,
    )


# ---------------------------------------------------------------------------
# OAuth consent flow (used by the CLI)
# ---------------------------------------------------------------------------

def build_oauth_consent_url(config: PublishConfig) -> str:
    if config.mode != "oauth" or config.oauth is None:
        raise PublishConfigurationError(
            "OAuth client configuration not detected. Set GOOGLE_OAUTH_* variables."
        )
    params = {
        "client_id": config.oauth.client_id,
        "redirect_uri": config.oauth.redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{GOOGLE_AUTH_URI}?{urlencode(params)}"


async def exchange_oauth_code(
    config: PublishConfig,
    code: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Path:
    """Trade a consent code for tokens and store them at the token path (mode 0600)."""
    if config.mode != "oauth" or config.oauth is None:
        raise PublishConfigurationError(
            "OAuth client configuration not detected. Set GOOGLE_OAUTH_* variables."
        )
    if not code.strip():
        raise PublishConfigurationError("No verification code provided")

    async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
        resp = await client.post(
            GOOGLE_TOKEN_URI,
            data={
                "code": code.strip(),
                "client_id": config.oauth.client_id,
                "client_secret": config.oauth.client_secret,
                "redirect_uri": config.oauth.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
    if resp.status_code != 200:
        raise PublishConfigurationError(
            f"Token exchange failed with HTTP {resp.status_code}: {resp.text[:300]}"
        )

    token_path = Path(config.oauth.token_path)
    token_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        json.dump(resp.json(), fh, indent=2)
    logger.info("OAuth token saved to %s", token_path)
    return token_path


def describe_publish_config(config: PublishConfig) -> Dict[str, Any]:
    """Redacted summary of the publishing configuration."""
    summary: Dict[str, Any] = {
        "mode": config.mode,
        "export_folder_id": config.export_folder_id,
        "source": config.source,
    }
    if config.mode == "service-account" and config.service_account:
        summary["project_id"] = config.service_account.get("project_id")
        summary["client_email"] = config.service_account.get("client_email")
        summary["private_key"] = config.service_account["private_key"][:40] + "…"
    elif config.mode == "oauth" and config.oauth:
        summary["token_path"] = config.oauth.token_path
        summary["token_present"] = Path(config.oauth.token_path).is_file()
    return summary
