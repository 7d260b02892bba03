"""
auth/oauth.py -- Google and GitHub sign-in through authlib.

A provider is offered when both its client id and secret are configured.
_PROVIDERS drives registration, the login page buttons, and
GET /api/v1/auth/providers, so those three can never disagree.

web/routes.py runs the redirect and code exchange through the authlib client
(state is kept in the SessionMiddleware cookie). This module then turns the
provider's answer into an ExternalProfile for FederatedStrategy.

Only verified email addresses are accepted. The local username is the email's
local part, so an unverified address would let anyone claim that username.

Layer rule: no imports from api/, web/, or library/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import ExternalProfile
from core.config import get_settings

logger = logging.getLogger("shelfnote.auth.oauth")

# name -> (button label, authlib register() kwargs)
_PROVIDERS: dict[str, tuple[str, dict]] = {
    "google": (
        "Google",
        {
            "server_metadata_url": "https://accounts.google.com/.well-known/openid-configuration",
            "client_kwargs": {"scope": "openid email profile"},
        },
    ),
    "github": (
        "GitHub",
        {
            "access_token_url": "https://github.com/login/oauth/access_token",  # noqa: S106
            "authorize_url": "https://github.com/login/oauth/authorize",
            "api_base_url": "https://api.github.com/",
            "client_kwargs": {"scope": "read:user user:email"},
        },
    ),
}


def _credentials(name: str) -> tuple[str, str]:
    cfg = get_settings()
    return getattr(cfg, f"{name}_client_id"), getattr(cfg, f"{name}_client_secret")


def get_enabled_providers() -> list[dict]:
    """[{"name": ..., "label": ...}] for each provider with credentials set."""
    return [{"name": name, "label": label} for name, (label, _) in _PROVIDERS.items() if all(_credentials(name))]


oauth = OAuth()

for _provider in get_enabled_providers():
    _client_id, _client_secret = _credentials(_provider["name"])
    oauth.register(
        name=_provider["name"],
        client_id=_client_id,
        client_secret=_client_secret,
        **_PROVIDERS[_provider["name"]][1],
    )
    logger.info("%s sign-in enabled", _provider["label"])


# ---------------------------------------------------------------------------
# Profile extraction
# ---------------------------------------------------------------------------


async def get_external_profile(client, provider: str, token: dict) -> ExternalProfile:
    """Build an ExternalProfile from a completed code exchange.

    Raises ValueError when the provider is unknown or no verified email is
    available; the web layer treats that as a failed sign-in.
    """
    if provider == "google":
        return _google_profile(token)
    if provider == "github":
        return await _github_profile(client, token)
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


def _google_profile(token: dict) -> ExternalProfile:
    # A missing email_verified claim counts as unverified.
    claims = token.get("userinfo") or {}
    if not claims.get("email_verified"):
        raise ValueError("Google did not return a verified email")
    if not claims.get("email"):
        raise ValueError("Google userinfo has no email claim")
    return ExternalProfile(email=claims["email"], display_name=claims.get("name") or "")


async def _github_profile(client, token: dict) -> ExternalProfile:
    user_resp = await client.get("user", token=token)
    user_resp.raise_for_status()
    account = user_resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()
    verified = [e["email"] for e in emails_resp.json() if e.get("primary") and e.get("verified")]
    if not verified:
        raise ValueError("GitHub account has no primary verified email")
    return ExternalProfile(email=verified[0], display_name=account.get("name") or account.get("login") or "")
