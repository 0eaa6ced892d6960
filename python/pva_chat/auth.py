"""
Access token acquisition with layered fallback.

The TokenBroker tries, in order:
    1. Silent acquisition against a cached account
    2. SSO-silent sign-in using the user's login hint
    3. Interactive (popup) sign-in, only when SSO-silent reports that
       interaction is required

"No cached account" and "no matching account" are expected conditions that
only select the next branch. Everything the broker needs from the identity
cache goes through an injected ``IdentityProvider``; ``MsalIdentityProvider``
is the production implementation on top of MSAL.

Last Grunted: 10/16/2026
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

import msal

from .errors import AuthFailure, IdentityProviderError, InteractionRequiredError
from .models import IdentityAccount, TokenResult


__all__ = [
    "IdentityProvider",
    "MsalIdentityProvider",
    "TokenBroker",
    "INTERACTION_REQUIRED_CODES",
]


logger = logging.getLogger(__name__)

# MSAL error codes meaning the user has to take part in sign-in.
INTERACTION_REQUIRED_CODES = frozenset(
    {"interaction_required", "login_required", "consent_required"}
)


class IdentityProvider(Protocol):
    """Interface to the identity cache and sign-in flows."""

    async def get_accounts(self) -> list[IdentityAccount]:
        """List accounts present in the identity cache."""

    async def acquire_token_silent(
        self, scopes: list[str], account: IdentityAccount
    ) -> Optional[TokenResult]:
        """Acquire a token for a cached account without user interaction."""

    async def acquire_token_sso_silent(
        self, scopes: list[str], login_hint: str
    ) -> Optional[TokenResult]:
        """Acquire a token from an active identity session using a login hint.

        Raises InteractionRequiredError if the user must confirm sign-in.
        """

    async def acquire_token_interactive(
        self, scopes: list[str], login_hint: str
    ) -> Optional[TokenResult]:
        """Acquire a token through an interactive (popup) sign-in."""


def _select_account(
    accounts: list[IdentityAccount], identity_hint: str
) -> Optional[IdentityAccount]:
    if len(accounts) == 1:
        return accounts[0]
    hint = (identity_hint or "").strip().lower()
    if not hint:
        return None
    return next(
        (account for account in accounts if account.username.strip().lower() == hint),
        None,
    )


class TokenBroker:
    """
    Acquires access tokens through an ordered fallback chain.

    Example:
        >>> broker = TokenBroker(MsalIdentityProvider(client_id, authority))
        >>> result = await broker.acquire({"api://bot/.default"}, "jane@contoso.com")
        >>> result.access_token
    """

    def __init__(self, provider: IdentityProvider) -> None:
        self._provider = provider

    @property
    def provider(self) -> IdentityProvider:
        return self._provider

    async def acquire(self, scopes: Iterable[str], identity_hint: str) -> TokenResult:
        """
        Acquire an access token for ``scopes``.

        Args:
            scopes: Requested scopes.
            identity_hint: User email, used to pick a cached account and as
                the login hint for SSO-silent and interactive sign-in.

        Returns:
            TokenResult with a non-empty access token.

        Raises:
            AuthFailure: If every applicable step failed.
        """
        scope_list = sorted({scope for scope in scopes if scope})
        if not scope_list:
            raise AuthFailure("No scopes requested for token acquisition")

        cached = await self._try_cached_account(scope_list, identity_hint)
        if cached is not None:
            return cached

        try:
            result = await self._provider.acquire_token_sso_silent(scope_list, identity_hint)
        except InteractionRequiredError as exc:
            logger.info("SSO-silent sign-in requires interaction: %s", exc)
            return await self._acquire_interactive(scope_list, identity_hint)
        except Exception as exc:
            logger.error("SSO-silent sign-in failed: %s", exc)
            raise AuthFailure(f"Failed to acquire access token: {exc}", cause=exc) from exc

        if result is None or not result.has_token:
            raise AuthFailure("Failed to acquire access token")

        logger.info("Access token acquired via SSO-silent sign-in")
        return result

    async def _try_cached_account(
        self, scopes: list[str], identity_hint: str
    ) -> Optional[TokenResult]:
        try:
            accounts = await self._provider.get_accounts()
        except Exception as exc:
            logger.warning("Could not read identity cache: %s", exc)
            return None

        if not accounts:
            logger.info("No users are signed in.")
            return None

        account = _select_account(accounts, identity_hint)
        if account is None:
            logger.info("No account found for user: %s", identity_hint)
            return None

        try:
            result = await self._provider.acquire_token_silent(scopes, account)
        except Exception as exc:
            logger.warning("Silent token acquisition failed for %s: %s", account.username, exc)
            return None

        if result is None or not result.has_token:
            logger.warning("Silent token acquisition returned no token for %s", account.username)
            return None

        logger.info("Access token acquired silently for cached account %s", account.username)
        return result

    async def _acquire_interactive(self, scopes: list[str], identity_hint: str) -> TokenResult:
        try:
            result = await self._provider.acquire_token_interactive(scopes, identity_hint)
        except Exception as exc:
            logger.error("Popup login failed: %s", exc)
            raise AuthFailure(f"Failed to acquire access token: {exc}", cause=exc) from exc

        if result is None or not result.has_token:
            raise AuthFailure("Failed to acquire access token")

        logger.info("Access token acquired via interactive sign-in")
        return result


# =============================================================================
# MSAL Provider
# =============================================================================


def _account_from_msal(raw: dict[str, Any]) -> IdentityAccount:
    return IdentityAccount(
        username=raw.get("username") or "",
        home_account_id=raw.get("home_account_id"),
        environment=raw.get("environment"),
    )


def _token_from_msal(raw: Optional[dict[str, Any]], requested: list[str]) -> Optional[TokenResult]:
    """Convert an MSAL result dict, raising on MSAL error responses."""
    if raw is None:
        return None

    error = raw.get("error")
    if error:
        description = raw.get("error_description") or error
        if error in INTERACTION_REQUIRED_CODES:
            raise InteractionRequiredError(description, error_code=error)
        raise IdentityProviderError(description, error_code=error)

    granted = raw.get("scope") or requested
    if isinstance(granted, str):
        granted = granted.split()

    expires_on = None
    if raw.get("expires_in") is not None:
        expires_on = datetime.now(timezone.utc) + timedelta(seconds=int(raw["expires_in"]))

    claims = raw.get("id_token_claims") or {}
    username = claims.get("preferred_username") or claims.get("upn")
    account = IdentityAccount(username=username) if username else None

    return TokenResult(
        access_token=raw.get("access_token") or "",
        expires_on=expires_on,
        scopes=frozenset(granted),
        account=account,
    )


class MsalIdentityProvider:
    """
    IdentityProvider backed by an MSAL public client application.

    MSAL calls block, so they run through ``asyncio.to_thread``; only MSAL
    itself touches the token cache. When ``token_cache_path`` is set the
    cache is loaded from that file and written back from the worker thread
    after every token request, including ones MSAL answered with an error.
    """

    def __init__(
        self,
        client_id: str,
        authority: str,
        token_cache_path: Optional[Path] = None,
        app: Optional[msal.PublicClientApplication] = None,
    ) -> None:
        self._cache_path = Path(token_cache_path).expanduser() if token_cache_path else None
        self._cache = msal.SerializableTokenCache()
        if self._cache_path is not None and self._cache_path.exists():
            self._cache.deserialize(self._cache_path.read_text(encoding="utf-8"))
            logger.debug("Loaded token cache from %s", self._cache_path)

        self._app = app or msal.PublicClientApplication(
            client_id,
            authority=authority,
            token_cache=self._cache,
        )

    def _persist_cache(self) -> None:
        if self._cache_path is None or not self._cache.has_state_changed:
            return
        try:
            self._cache_path.parent.mkdir(parents=True, exist_ok=True)
            self._cache_path.write_text(self._cache.serialize(), encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to persist token cache to %s: %s", self._cache_path, exc)

    def _find_raw_account(self, account: IdentityAccount) -> Optional[dict[str, Any]]:
        for raw in self._app.get_accounts():
            if account.home_account_id and raw.get("home_account_id") == account.home_account_id:
                return raw
            if not account.home_account_id and raw.get("username") == account.username:
                return raw
        return None

    async def _acquire(
        self, call: Callable[[], Optional[dict[str, Any]]], scopes: list[str]
    ) -> Optional[TokenResult]:
        def _worker() -> Optional[TokenResult]:
            try:
                return _token_from_msal(call(), scopes)
            finally:
                self._persist_cache()

        return await asyncio.to_thread(_worker)

    async def get_accounts(self) -> list[IdentityAccount]:
        raw_accounts = await asyncio.to_thread(self._app.get_accounts)
        return [_account_from_msal(raw) for raw in raw_accounts]

    async def acquire_token_silent(
        self, scopes: list[str], account: IdentityAccount
    ) -> Optional[TokenResult]:
        def _silent() -> Optional[dict[str, Any]]:
            raw_account = self._find_raw_account(account)
            if raw_account is None:
                return None
            return self._app.acquire_token_silent(scopes, account=raw_account)

        return await self._acquire(_silent, scopes)

    async def acquire_token_sso_silent(
        self, scopes: list[str], login_hint: str
    ) -> Optional[TokenResult]:
        return await self._acquire(
            lambda: self._app.acquire_token_interactive(
                scopes, prompt="none", login_hint=login_hint or None
            ),
            scopes,
        )

    async def acquire_token_interactive(
        self, scopes: list[str], login_hint: str
    ) -> Optional[TokenResult]:
        return await self._acquire(
            lambda: self._app.acquire_token_interactive(
                scopes, prompt="select_account", login_hint=login_hint or None
            ),
            scopes,
        )
