"""Session management for SYNO.API.Auth.

Authentication Flow:
    1. Resolve SYNO.API.Auth through the registry
    2. POST method=login with account, passwd, session name and format=sid
    3. Stamp the returned sid on every request as ``_sid``
    4. On a session-invalid error (106, 107, 119), log in again once

Concurrent callers never trigger overlapping logins: a single login task is
shared by everyone who needs a session at the same time, and they all see
the same Session or the same exception.
"""

import asyncio
import logging
from typing import Optional

import httpx

from .envelope import decode_envelope
from .exceptions import AuthenticationError, DecodeError, describe_error
from .models import AUTH_API, AudioStationConfig, Session
from .registry import ApiRegistry
from .request import RequestBuilder
from .transport import send_request

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the single live Session of a client.

    Attributes:
        config: Credentials and session name
    """

    def __init__(self, http: httpx.AsyncClient, registry: ApiRegistry, config: AudioStationConfig):
        self._http = http
        self._registry = registry
        self.config = config
        self._session: Optional[Session] = None
        self._generation = 0
        self._refresh: Optional[asyncio.Future] = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def generation(self) -> int:
        """Number of login attempts started so far."""
        return self._generation

    async def ensure_authenticated(self) -> Session:
        """Return the live session, logging in if there is none.

        Raises:
            AuthenticationError: If the credentials are rejected
        """
        session = self._session
        if session is not None and session.valid:
            return session

        async with self._lock:
            if self._refresh is None or self._refresh.done():
                self._start_login()
            refresh = self._refresh
        return await asyncio.shield(refresh)

    async def reauthenticate(self, stale: Session) -> Session:
        """Replace a session the server rejected.

        Only the first caller holding the latest session starts a login;
        callers holding an older one join the latest attempt.

        Args:
            stale: Session that was reported invalid

        Returns:
            Fresh session

        Raises:
            AuthenticationError: If the login fails (shared by all waiters)
        """
        async with self._lock:
            if stale.generation == self._generation:
                stale.invalidate()
                logger.info(f"Session for {stale.account} rejected by server, logging in again")
                self._start_login()
            refresh = self._refresh
        return await asyncio.shield(refresh)

    async def login(self) -> Session:
        """Force a new login, replacing any current session."""
        async with self._lock:
            self._start_login()
            refresh = self._refresh
        return await asyncio.shield(refresh)

    async def logout(self) -> None:
        """Invalidate the session locally and end it on the server.

        Raises:
            ApiError: If the server rejects the logout
        """
        session = self._session
        if session is None or not session.valid:
            return

        session.invalidate()
        self._session = None

        descriptor = await self._registry.resolve(AUTH_API)
        request = (
            RequestBuilder(descriptor, "logout")
            .set_param("session", self.config.session_name)
            .build()
        )
        response = await send_request(self._http, request, sid=session.sid, timeout=self.config.timeout)
        response.raise_for_status()
        envelope = decode_envelope(response.content)
        if not envelope.success:
            logger.warning(f"Logout reported error {envelope.error_code}: {describe_error(envelope.error_code)}")
        logger.info(f"Logged out {session.account}")

    def _start_login(self) -> None:
        self._generation += 1
        self._refresh = asyncio.ensure_future(self._login(self._generation))

    async def _login(self, generation: int) -> Session:
        descriptor = await self._registry.resolve(AUTH_API)
        request = (
            RequestBuilder(descriptor, "login")
            .set_param("account", self.config.username)
            .set_param("passwd", self.config.password)
            .set_param("session", self.config.session_name)
            .set_param("format", "sid")
            .build()
        )

        logger.debug(f"Logging in as {self.config.username} (attempt {generation})")
        response = await send_request(self._http, request, timeout=self.config.timeout)
        response.raise_for_status()
        envelope = decode_envelope(response.content)

        if not envelope.success:
            code = envelope.error_code
            logger.error(f"Login failed for {self.config.username}: {code} {describe_error(code)}")
            raise AuthenticationError(
                f"Login failed for {self.config.username}: {describe_error(code)}", code=code
            )

        sid = envelope.data.get("sid") if isinstance(envelope.data, dict) else None
        if not isinstance(sid, str) or not sid:
            raise DecodeError("Login response does not contain a session id")

        session = Session(sid=sid, account=self.config.username, generation=generation)
        self._session = session
        logger.info(f"Logged in as {self.config.username}")
        return session
