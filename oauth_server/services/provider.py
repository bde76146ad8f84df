"""AuthorizationProvider: the OAuth 2.0 Authorization Code + PKCE state machine.

One authorization attempt moves through these states, keyed by the
browser's session id:

  NO_SESSION                 authorize() has not seen this browser yet
  LOGIN_REQUIRED             pending authorization stored, login page shown
  AUTHENTICATED_NO_CONSENT   session logged in, consent page shown
  CONSENT_DECIDED            approve -> code minted, deny -> access_denied
  CODE_ISSUED                client holds a single-use code
  TOKEN_ISSUED               code exchanged for access + refresh tokens

The provider composes the six stores and never touches their tables
directly.  It knows nothing about HTTP: the browser-facing handlers return
an AuthPageResult (HTML or a redirect, plus the session id whose cookie
must be set) and the token operations return OAuthTokens or raise an
OAuthError subclass.  api/ turns both into responses.

Code and token failures always raise; there is no sentinel return an
exchange could accidentally continue with.  Expired codes and tokens are
deleted at the moment a lookup finds them expired, so storage stays
bounded even when the cleanup task is late.

TRADE-OFF: tokens are opaque random strings, not JWTs.  Every bearer check
costs a store lookup, but revocation and expiry take effect immediately
and no signing keys need rotating.

TRADE-OFF: a pending authorization is upserted in one transaction with no
per-session lock.  Two tabs racing authorize() for the same browser end
with whichever write lands last; the unique index on session_id keeps it
to one row.

FAIL POINT: refresh tokens are not rotated.  A leaked refresh token stays
usable until it expires or is revoked.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import secrets
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from oauth_server.core.config import Settings
from oauth_server.core.errors import (
    AlreadyExistsError,
    InvalidGrantError,
    InvalidScopeError,
    InvalidTokenError,
)
from oauth_server.core.metrics import (
    CLEANUP_REMOVED,
    CONSENT_DECISIONS,
    LOGIN_ATTEMPTS,
    TOKENS_ISSUED,
)
from oauth_server.core.urls import with_query
from oauth_server.db.engine import Database
from oauth_server.models.authorization_code import AuthorizationCode
from oauth_server.models.oauth_client import OAuthClient
from oauth_server.models.pending_authorization import (
    AuthorizationParams,
    PendingAuthorization,
)
from oauth_server.models.token import AuthInfo, OAuthTokens, Token
from oauth_server.repos.auth_code_repo import AuthorizationCodeStore
from oauth_server.repos.client_repo import ClientRegistry
from oauth_server.repos.pending_authorization_repo import PendingAuthorizationStore
from oauth_server.repos.session_repo import SessionStore
from oauth_server.repos.token_repo import TokenStore
from oauth_server.repos.user_repo import UserDirectory
from oauth_server.services import pkce_service
from oauth_server.services.auth_pages import (
    render_consent_page,
    render_login_page,
    render_success_page,
)
from oauth_server.services.password_hasher import PasswordHasher

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    access_token_lifetime: int = 3600
    refresh_token_lifetime: int = 86400
    authorization_code_lifetime: int = 600
    session_ttl: int = 1800
    allowed_scopes: tuple[str, ...] = ("read", "write", "admin")
    default_scopes: tuple[str, ...] = ("read",)

    @staticmethod
    def from_settings(settings: Settings) -> ProviderConfig:
        return ProviderConfig(
            access_token_lifetime=settings.access_token_lifetime,
            refresh_token_lifetime=settings.refresh_token_lifetime,
            authorization_code_lifetime=settings.authorization_code_lifetime,
            session_ttl=settings.session_ttl,
            allowed_scopes=settings.allowed_scopes,
            default_scopes=settings.default_scopes,
        )


@dataclass(frozen=True, slots=True)
class AuthPageResult:
    """What the browser should see next.

    Exactly one of html/redirect_url is set.  session_id, when set, is the
    value of the session cookie the HTTP layer must send back.
    """

    status_code: int
    html: str | None = None
    redirect_url: str | None = None
    session_id: str | None = None

    @property
    def is_redirect(self) -> bool:
        return self.redirect_url is not None


def _new_session_id() -> str:
    return str(uuid.uuid4())


def _new_token() -> str:
    return secrets.token_urlsafe(32)


class AuthorizationProvider:
    def __init__(
        self,
        *,
        clients: ClientRegistry,
        users: UserDirectory,
        sessions: SessionStore,
        pending: PendingAuthorizationStore,
        codes: AuthorizationCodeStore,
        tokens: TokenStore,
        config: ProviderConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.clients = clients
        self.users = users
        self.sessions = sessions
        self.pending = pending
        self.codes = codes
        self.tokens = tokens
        self.config = config or ProviderConfig()
        self._clock = clock

    @classmethod
    def from_database(
        cls,
        database: Database,
        hasher: PasswordHasher,
        config: ProviderConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> AuthorizationProvider:
        config = config or ProviderConfig()
        factory = database.session_factory
        return cls(
            clients=ClientRegistry(factory, config.allowed_scopes),
            users=UserDirectory(factory, hasher),
            sessions=SessionStore(factory),
            pending=PendingAuthorizationStore(factory),
            codes=AuthorizationCodeStore(factory),
            tokens=TokenStore(factory),
            config=config,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Browser flow
    # ------------------------------------------------------------------

    async def authorize(
        self,
        client: OAuthClient,
        params: AuthorizationParams,
        session_id: str | None = None,
    ) -> AuthPageResult:
        """Start (or restart) an authorization for this browser session.

        Returns the login page when the session is not logged in, the
        consent page when it is.  Raises InvalidScopeError when none of the
        requested scopes is allowed.
        """
        requested = tuple(params.scopes) or self.config.default_scopes
        valid_scopes = tuple(s for s in requested if s in self.config.allowed_scopes)
        if not valid_scopes:
            logger.warning(
                "OAUTH FLOW [authorize] FAIL: no allowed scope  client_id=%s requested=%s",
                client.client_id,
                " ".join(requested),
            )
            raise InvalidScopeError(
                f'Invalid scope: "{" ".join(requested)}" not in allowed scopes: '
                f'"{" ".join(self.config.allowed_scopes)}"'
            )

        session_id = session_id or _new_session_id()
        now = self._clock()
        username = await self._logged_in_username(session_id, now)

        pending = PendingAuthorization(
            session_id=session_id,
            # snapshot without the secret; only display and redirect data is needed
            client=dataclasses.replace(client, client_secret=None),
            params=params,
            valid_scopes=valid_scopes,
            user_id=username,
            created_at=now,
            expires_at=now + self.config.authorization_code_lifetime,
        )
        await self.pending.upsert_fresh_or_replace(pending, now)

        if username is None:
            logger.info(
                "OAUTH FLOW [authorize] login required  client_id=%s session=%s…",
                client.client_id,
                session_id[:8],
            )
            return AuthPageResult(
                status_code=200, html=render_login_page(), session_id=session_id
            )

        logger.info(
            "OAUTH FLOW [authorize] consent required  client_id=%s user=%s scopes=%s",
            client.client_id,
            username,
            " ".join(valid_scopes),
        )
        return AuthPageResult(
            status_code=200,
            html=render_consent_page(
                client.display_name, valid_scopes, params.redirect_uri
            ),
            session_id=session_id,
        )

    async def handle_login(
        self, session_id: str | None, username: str, password: str
    ) -> AuthPageResult:
        if not username or not password:
            LOGIN_ATTEMPTS.labels(form="login", result="failure").inc()
            return AuthPageResult(
                status_code=400,
                html=render_login_page("Please provide username and password"),
            )

        if not await self.users.verify_password(username, password):
            LOGIN_ATTEMPTS.labels(form="login", result="failure").inc()
            logger.warning("OAUTH FLOW [login] FAIL: bad credentials  user=%s", username)
            return AuthPageResult(
                status_code=401,
                html=render_login_page("Username or password incorrect"),
            )

        LOGIN_ATTEMPTS.labels(form="login", result="success").inc()
        return await self._complete_login(
            session_id,
            username,
            title="Login successful",
            message="You are now logged in. You can close this window.",
        )

    async def handle_register(
        self,
        session_id: str | None,
        username: str,
        password: str,
        password_confirm: str,
    ) -> AuthPageResult:
        if not username or not password:
            LOGIN_ATTEMPTS.labels(form="register", result="failure").inc()
            return AuthPageResult(
                status_code=400,
                html=render_login_page("Please provide username and password"),
            )
        if password != password_confirm:
            LOGIN_ATTEMPTS.labels(form="register", result="failure").inc()
            return AuthPageResult(
                status_code=400, html=render_login_page("Passwords do not match")
            )

        try:
            await self.users.create_user(username, password)
        except AlreadyExistsError:
            LOGIN_ATTEMPTS.labels(form="register", result="failure").inc()
            logger.info("OAUTH FLOW [register] username taken  user=%s", username)
            return AuthPageResult(
                status_code=400, html=render_login_page("Username already exists")
            )

        LOGIN_ATTEMPTS.labels(form="register", result="success").inc()
        return await self._complete_login(
            session_id,
            username,
            title="Registration successful",
            message="Your account has been created and you are now logged in.",
        )

    async def handle_authorization_confirmation(
        self, session_id: str | None, action: str
    ) -> AuthPageResult:
        """Apply the user's approve/deny decision for this session's pending request."""
        if not session_id:
            return AuthPageResult(
                status_code=400, html=render_login_page("Invalid session")
            )

        pending = await self.pending.get(session_id)
        if pending is None:
            return AuthPageResult(
                status_code=400,
                html=render_login_page("Authorization request expired or does not exist"),
            )

        now = self._clock()
        if pending.is_expired(now):
            await self.pending.delete(session_id)
            return AuthPageResult(
                status_code=400, html=render_login_page("Authorization request expired")
            )

        username = await self._logged_in_username(session_id, now)
        if username is None:
            return AuthPageResult(
                status_code=401,
                html=render_login_page("Please login first"),
                session_id=session_id,
            )

        params = pending.params
        if action == "deny":
            await self.pending.delete(session_id)
            CONSENT_DECISIONS.labels(decision="deny").inc()
            logger.info(
                "OAUTH FLOW [consent] denied  client_id=%s user=%s",
                pending.client.client_id,
                username,
            )
            return AuthPageResult(
                status_code=302,
                redirect_url=with_query(
                    params.redirect_uri,
                    {
                        "error": "access_denied",
                        "error_description": "User denied the authorization request",
                        "state": params.state,
                    },
                ),
            )

        if action != "approve":
            return AuthPageResult(
                status_code=400,
                html=render_consent_page(
                    pending.client.display_name,
                    pending.valid_scopes,
                    params.redirect_uri,
                    error="Invalid action",
                ),
            )

        record = AuthorizationCode.new(
            code=_new_token(),
            client_id=pending.client.client_id,
            code_challenge=params.code_challenge,
            redirect_uri=params.redirect_uri,
            scopes=pending.valid_scopes,
            resource=params.resource,
            now=now,
            lifetime=self.config.authorization_code_lifetime,
        )
        await self.codes.create_code(record)
        await self.pending.delete(session_id)
        CONSENT_DECISIONS.labels(decision="approve").inc()
        logger.info(
            "OAUTH FLOW [consent] approved, code issued  client_id=%s user=%s scopes=%s",
            record.client_id,
            username,
            " ".join(record.scopes),
        )
        return AuthPageResult(
            status_code=302,
            redirect_url=with_query(
                params.redirect_uri, {"code": record.code, "state": params.state}
            ),
        )

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def challenge_for_authorization_code(
        self, client: OAuthClient, code: str
    ) -> str:
        """Stored PKCE challenge for `code`.  Expired codes are left for the exchange to delete."""
        record = await self.codes.get_code(code)
        if record is None:
            raise InvalidGrantError("Invalid authorization code")
        if record.is_expired(self._clock()):
            raise InvalidGrantError("Authorization code has expired")
        if record.client_id != client.client_id:
            raise InvalidGrantError("Authorization code was not issued to this client")
        return record.code_challenge

    async def exchange_authorization_code(
        self,
        client: OAuthClient,
        code: str,
        code_verifier: str | None = None,
        redirect_uri: str | None = None,
        resource: str | None = None,
    ) -> OAuthTokens:
        record = await self.codes.get_code(code)
        if record is None:
            logger.warning("OAUTH FLOW [token] FAIL: authorization code not found")
            raise InvalidGrantError("Invalid authorization code")

        now = self._clock()
        if record.is_expired(now):
            await self.codes.delete_code(code)
            logger.warning("OAUTH FLOW [token] FAIL: authorization code expired")
            raise InvalidGrantError("Authorization code has expired")

        # FAIL POINT: a code stolen from one client is useless to another
        if record.client_id != client.client_id:
            logger.warning(
                "OAUTH FLOW [token] FAIL: code issued to %s, presented by %s",
                record.client_id,
                client.client_id,
            )
            raise InvalidGrantError("Authorization code was not issued to this client")

        if redirect_uri is not None and redirect_uri != record.redirect_uri:
            logger.warning("OAUTH FLOW [token] FAIL: redirect_uri mismatch")
            raise InvalidGrantError("Invalid redirect_uri")

        # TRADE-OFF: strict equality, so a resource sent for a code that was
        # issued without one is refused.  Servers that compare only when both
        # sides carry a resource would accept it; clients that add a resource
        # at the token step alone must repeat the authorization.
        if resource is not None and resource != record.resource:
            logger.warning("OAUTH FLOW [token] FAIL: resource mismatch")
            raise InvalidGrantError("Invalid resource")

        if code_verifier is not None and not pkce_service.verify_code_challenge(
            code_verifier, record.code_challenge
        ):
            logger.warning("OAUTH FLOW [token] FAIL: PKCE verification failed")
            raise InvalidGrantError("PKCE verification failed")

        # Whoever deletes the row owns the code; a concurrent exchange that
        # loses the delete gets nothing.
        if not await self.codes.delete_code(code):
            logger.warning("OAUTH FLOW [token] FAIL: authorization code already used")
            raise InvalidGrantError("Invalid authorization code")

        scopes = record.scopes or self.config.default_scopes
        refresh = Token(
            token=_new_token(),
            type="refresh",
            client_id=client.client_id,
            scopes=scopes,
            created_at=now,
            expires_at=now + self.config.refresh_token_lifetime,
            resource=record.resource,
            authorization_code=code,
        )
        access = Token(
            token=_new_token(),
            type="access",
            client_id=client.client_id,
            scopes=scopes,
            created_at=now,
            expires_at=now + self.config.access_token_lifetime,
            resource=record.resource,
            refresh_token=refresh.token,
            authorization_code=code,
        )
        await self.tokens.create_token(access)
        await self.tokens.create_token(refresh)
        TOKENS_ISSUED.labels(type="access", grant_type="authorization_code").inc()
        TOKENS_ISSUED.labels(type="refresh", grant_type="authorization_code").inc()

        logger.info(
            "OAUTH FLOW [token] tokens issued  client_id=%s scopes=%s expires_in=%d",
            client.client_id,
            " ".join(scopes),
            self.config.access_token_lifetime,
        )
        return OAuthTokens(
            access_token=access.token,
            token_type="bearer",
            expires_in=self.config.access_token_lifetime,
            scope=" ".join(scopes),
            refresh_token=refresh.token,
        )

    async def exchange_refresh_token(
        self,
        client: OAuthClient,
        refresh_token: str,
        scopes: Sequence[str] | None = None,
        resource: str | None = None,
    ) -> OAuthTokens:
        """Mint a new access token.  The refresh token itself is returned unchanged."""
        record = await self.tokens.get_token(refresh_token, "refresh")
        if record is None:
            logger.warning("OAUTH FLOW [refresh] FAIL: refresh token not found")
            raise InvalidGrantError("Invalid refresh token")

        now = self._clock()
        if record.is_expired(now):
            await self.tokens.delete_token(refresh_token)
            logger.warning("OAUTH FLOW [refresh] FAIL: refresh token expired")
            raise InvalidGrantError("Refresh token has expired")

        if record.client_id != client.client_id:
            logger.warning("OAUTH FLOW [refresh] FAIL: client_id mismatch")
            raise InvalidGrantError("Refresh token was not issued to this client")

        # same strict equality as the code exchange
        if resource is not None and resource != record.resource:
            logger.warning("OAUTH FLOW [refresh] FAIL: resource mismatch")
            raise InvalidGrantError("Invalid resource")

        requested = tuple(dict.fromkeys(scopes)) if scopes else record.scopes
        exceeding = [s for s in requested if s not in record.scopes]
        if exceeding or not requested:
            logger.warning(
                "OAUTH FLOW [refresh] FAIL: scope exceeds grant  requested=%s granted=%s",
                " ".join(requested),
                " ".join(record.scopes),
            )
            raise InvalidScopeError(
                f'Requested scope "{" ".join(requested)}" exceeds the granted scope '
                f'"{" ".join(record.scopes)}"'
            )

        access = Token(
            token=_new_token(),
            type="access",
            client_id=client.client_id,
            scopes=requested,
            created_at=now,
            expires_at=now + self.config.access_token_lifetime,
            resource=record.resource,
            refresh_token=refresh_token,
            authorization_code=record.authorization_code,
        )
        await self.tokens.create_token(access)
        TOKENS_ISSUED.labels(type="access", grant_type="refresh_token").inc()

        logger.info(
            "OAUTH FLOW [refresh] access token issued  client_id=%s scopes=%s",
            client.client_id,
            " ".join(requested),
        )
        return OAuthTokens(
            access_token=access.token,
            token_type="bearer",
            expires_in=self.config.access_token_lifetime,
            scope=" ".join(requested),
            refresh_token=refresh_token,
        )

    # ------------------------------------------------------------------
    # Resource server side
    # ------------------------------------------------------------------

    async def verify_access_token(self, token: str) -> AuthInfo:
        record = await self.tokens.get_token(token, "access")
        if record is None:
            raise InvalidTokenError("Invalid access token")

        if record.is_expired(self._clock()):
            await self.tokens.delete_token(token)
            raise InvalidTokenError("Access token has expired")

        return AuthInfo(
            token=record.token,
            client_id=record.client_id,
            scopes=record.scopes,
            expires_at=math.floor(record.expires_at),
            resource=record.resource,
        )

    async def validate_access_token(self, token: str) -> AuthInfo | None:
        """verify_access_token, but None instead of InvalidTokenError."""
        try:
            return await self.verify_access_token(token)
        except InvalidTokenError as exc:
            logger.debug("Access token rejected: %s", exc.message)
            return None

    async def revoke_token(
        self,
        client: OAuthClient,
        token: str,
        token_type_hint: str | None = None,
    ) -> None:
        """RFC 7009: unknown tokens and other clients' tokens are a silent no-op."""
        token_type = "refresh" if token_type_hint == "refresh_token" else "access"
        record = await self.tokens.get_token(token, token_type)
        if record is None or record.client_id != client.client_id:
            logger.info(
                "OAUTH FLOW [revoke] nothing to revoke  client_id=%s type=%s",
                client.client_id,
                token_type,
            )
            return

        await self.tokens.delete_token(token)
        logger.info(
            "OAUTH FLOW [revoke] %s token revoked  client_id=%s",
            token_type,
            client.client_id,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_sessions(self) -> dict[str, int]:
        now = self._clock()
        sessions = await self.sessions.cleanup_expired(self.config.session_ttl, now=now)
        pending = await self.pending.cleanup_expired(now=now)
        removed = {"user_sessions": sessions, "pending_authorizations": pending}
        _record_removed(removed)
        return removed

    async def cleanup(self) -> dict[str, int]:
        """Sweep every collection; returns rows removed per collection."""
        now = self._clock()
        codes = await self.codes.cleanup_expired(now=now)
        tokens = await self.tokens.cleanup_expired(now=now)
        session_counts = await self.cleanup_sessions()
        removed = {"authorization_codes": codes, "tokens": tokens}
        _record_removed(removed)
        removed.update(session_counts)
        logger.info(
            "OAuth cleanup completed  %s",
            " ".join(f"{name}={count}" for name, count in removed.items()),
        )
        return removed

    # ------------------------------------------------------------------

    async def _logged_in_username(self, session_id: str, now: float) -> str | None:
        user_session = await self.sessions.get_session(session_id)
        if user_session is None:
            return None
        if user_session.is_expired(self.config.session_ttl, now):
            await self.sessions.delete_session(session_id)
            return None
        return user_session.username

    async def _complete_login(
        self, session_id: str | None, username: str, *, title: str, message: str
    ) -> AuthPageResult:
        session_id = session_id or _new_session_id()
        await self.sessions.create_session(session_id, username, now=self._clock())

        pending = await self.pending.get(session_id)
        if pending is None:
            logger.info("OAUTH FLOW [login] logged in, nothing pending  user=%s", username)
            return AuthPageResult(
                status_code=200,
                html=render_success_page(title, message),
                session_id=session_id,
            )

        await self.pending.update(session_id, user_id=username)
        logger.info(
            "OAUTH FLOW [login] logged in, consent required  client_id=%s user=%s",
            pending.client.client_id,
            username,
        )
        return AuthPageResult(
            status_code=200,
            html=render_consent_page(
                pending.client.display_name,
                pending.valid_scopes,
                pending.params.redirect_uri,
            ),
            session_id=session_id,
        )


def _record_removed(removed: dict[str, int]) -> None:
    for collection, count in removed.items():
        if count:
            CLEANUP_REMOVED.labels(collection=collection).inc(count)
