"""WebUntis session management.

SisClient performs the JSON-RPC login (password or TOTP secret) and hands out
SisSession objects. A session carries the cookie identifiers issued at login
and a short-lived bearer token that is refreshed transparently whenever an
authorized request needs it. SessionScope ties the login/logout pair to a
with-block so every exit path releases the upstream session.
"""

import base64
import json
import time
from typing import Any, Callable

import pyotp
import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from schoolfeed.config import FeedConfig
from schoolfeed.errors import (
    AuthError,
    ParseError,
    SessionClosedError,
    TransportError,
    UpstreamStatusError,
)
from schoolfeed.logging import get_logger

logger = get_logger(__name__)

RPC_PATH = "WebUntis/jsonrpc.do"
RPC_INTERN_PATH = "WebUntis/jsonrpc_intern.do"
TOKEN_PATH = "WebUntis/api/token/new"


def _decode_segment(segment: str) -> bytes:
    """Decode a base64 token segment, standard or url-safe, padded or not."""
    normalized = segment.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True)


def token_expiry(token: str) -> float | None:
    """Return the `exp` claim of a three-part bearer token, if readable."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    try:
        payload = json.loads(_decode_segment(parts[1]))
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    expires = payload.get("exp")
    if isinstance(expires, bool) or not isinstance(expires, (int, float)):
        return None
    return float(expires)


def is_token_valid(token: str | None, now: float | None = None) -> bool:
    """Check if a bearer token is well-formed and not yet expired."""
    if not token:
        return False
    expires = token_expiry(token)
    if expires is None:
        return False
    if now is None:
        now = time.time()
    return expires > now


def _url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def _send(http: requests.Session, method: str, url: str, **kwargs: Any) -> requests.Response:
    """Send a request, mapping network and status failures to feed errors."""
    try:
        response = http.request(method, url, **kwargs)
    except requests.Timeout as e:
        logger.warning("sis_request_timeout", method=method, url=url)
        raise TransportError(f"SIS request timed out: {method} {url}") from e
    except requests.RequestException as e:
        logger.warning("sis_request_failed", method=method, url=url, error=str(e))
        raise TransportError(f"SIS request failed: {e}") from e

    if not 200 <= response.status_code < 300:
        logger.warning(
            "sis_request_rejected", method=method, url=url, status=response.status_code
        )
        raise UpstreamStatusError(response.status_code, url)
    return response


class SisSession:
    """An authenticated WebUntis session.

    Owned by one logical fetch operation. Once logged out, the session is
    closed and any further use raises SessionClosedError.
    """

    def __init__(
        self,
        http: requests.Session,
        config: FeedConfig,
        session_id: str,
        person_id: int = 0,
        person_type: int = 0,
        class_id: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self._config = config
        self._clock = clock
        self.session_id = session_id
        self.person_id = person_id
        self.person_type = person_type
        self.class_id = class_id
        self.token: str | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("SIS session was used after logout")

    def cookie_header(self) -> str:
        return f"JSESSIONID={self.session_id}; schoolname={self._config.sis_school}"

    def refresh_token(self) -> str:
        """Fetch a new bearer token for this session.

        Raises:
            AuthError: If the SIS hands out a token that is unusable.
        """
        token = self.request("GET", TOKEN_PATH, auth=False).strip()
        if not is_token_valid(token, self._clock()):
            logger.error("token_refresh_failed", reason="invalid_token")
            raise AuthError("SIS issued an invalid or expired bearer token")
        self.token = token
        logger.debug("token_refreshed", expires=token_expiry(token))
        return token

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: dict[str, str] | None = None,
        auth: bool = True,
    ) -> str:
        """Issue a request against the SIS and return the raw body.

        Args:
            method: HTTP method.
            path: Path relative to the SIS base URL.
            params: Query parameters; list values repeat the key.
            json_body: JSON request body.
            data: Form-encoded request body.
            auth: Attach a bearer token, refreshing it when absent or expired.

        Raises:
            TransportError: On network failure, timeout or non-2xx status.
            AuthError: If a required token cannot be obtained.
        """
        self._ensure_open()

        headers = {"Cookie": self.cookie_header()}
        if auth:
            if not is_token_valid(self.token, self._clock()):
                self.refresh_token()
            headers["Authorization"] = f"Bearer {self.token}"

        response = _send(
            self._http,
            method,
            _url(self._config.sis_base_url, path),
            params=params,
            json=json_body,
            data=data,
            headers=headers,
            timeout=self._config.request_timeout,
        )
        return response.text

    def request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        """Issue a request and decode the JSON body.

        Raises:
            ParseError: If the body is not valid JSON.
        """
        body = self.request(method, path, **kwargs)
        try:
            return json.loads(body)
        except ValueError as e:
            raise ParseError(f"SIS returned invalid JSON for {path}: {e}") from e

    def logout(self) -> bool:
        """End the upstream session (best effort).

        Returns:
            True if the SIS acknowledged the logout, False if it could not be
            reached. The session is closed either way.
        """
        if self._closed:
            return True
        body = {
            "id": self._config.sis_app_id,
            "method": "logout",
            "params": [],
            "jsonrpc": "2.0",
        }
        try:
            _send(
                self._http,
                "POST",
                _url(self._config.sis_base_url, RPC_PATH),
                params={"school": self._config.sis_school},
                json=body,
                headers={"Cookie": self.cookie_header()},
                timeout=self._config.request_timeout,
            )
        except TransportError as e:
            logger.warning("logout_failed", error=str(e))
            return False
        finally:
            self._closed = True
            self.token = None
        logger.info("logout_succeeded", person_id=self.person_id)
        return True


class SisClient:
    """Creates authenticated WebUntis sessions."""

    def __init__(
        self,
        config: FeedConfig,
        http: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.http = http if http is not None else requests.Session()
        self.clock = clock

    def _new_session(self, session_id: str, **identifiers: int) -> SisSession:
        return SisSession(
            self.http, self.config, session_id, clock=self.clock, **identifiers
        )

    def _rpc(self, path: str, params: dict[str, str], body: dict[str, Any]) -> requests.Response:
        return _send(
            self.http,
            "POST",
            _url(self.config.sis_base_url, path),
            params=params,
            json=body,
            timeout=self.config.request_timeout,
        )

    @staticmethod
    def _rpc_result(response: requests.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise ParseError(f"Login response is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ParseError("Login response is not a JSON object")

        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.error("authentication_failed", reason=message)
            raise AuthError(f"SIS rejected login: {message}")

        result = payload.get("result")
        if not isinstance(result, dict):
            raise AuthError("SIS login response carries no result")
        return result

    def login_password(self, username: str, password: str) -> SisSession:
        """Log in with username and password.

        Raises:
            AuthError: If the SIS rejects the credentials.
            TransportError: If the SIS cannot be reached.
        """
        logger.info("authentication_started", method="password", user=username)
        body = {
            "id": self.config.sis_app_id,
            "method": "authenticate",
            "params": {
                "user": username,
                "password": password,
                "client": self.config.sis_app_id,
            },
            "jsonrpc": "2.0",
        }
        response = self._rpc(RPC_PATH, {"school": self.config.sis_school}, body)
        result = self._rpc_result(response)

        session_id = result.get("sessionId")
        if not session_id:
            raise AuthError("SIS login response carries no session id")

        session = self._new_session(
            str(session_id),
            person_id=int(result.get("personId") or 0),
            person_type=int(result.get("personType") or 0),
            class_id=int(result.get("klasseId") or 0),
        )
        logger.info("authentication_succeeded", person_id=session.person_id)
        return session

    def login_secret(self, username: str, secret: str) -> SisSession:
        """Log in with a one-time code derived from the shared TOTP secret.

        Raises:
            AuthError: If the SIS rejects the code or sets no session cookie.
            TransportError: If the SIS cannot be reached.
        """
        logger.info("authentication_started", method="secret", user=username)
        now = self.clock()
        body = {
            "id": self.config.sis_app_id,
            "method": "getUserData2017",
            "params": [
                {
                    "auth": {
                        "clientTime": int(now * 1000),
                        "user": username,
                        "otp": pyotp.TOTP(secret).at(now),
                    }
                }
            ],
            "jsonrpc": "2.0",
        }
        response = self._rpc(
            RPC_INTERN_PATH,
            {"m": "getUserData2017", "school": self.config.sis_school, "v": "i2.2"},
            body,
        )
        result = self._rpc_result(response)

        session_id = response.cookies.get("JSESSIONID")
        if not session_id:
            logger.error("authentication_failed", reason="session_cookie_missing")
            raise AuthError("SIS set no JSESSIONID cookie")

        user_data = result.get("userData") or {}
        session = self._new_session(
            session_id,
            person_id=int(user_data.get("elemId") or 0),
            class_id=int(user_data.get("klasseId") or 0),
        )
        logger.info("authentication_succeeded", person_id=session.person_id)
        return session

    def _login_once(self) -> SisSession:
        config = self.config
        if not config.sis_username or not (config.sis_secret or config.sis_password):
            raise AuthError("No SIS credentials configured")
        if config.sis_secret:
            return self.login_secret(config.sis_username, config.sis_secret)
        return self.login_password(config.sis_username, config.sis_password)

    def login(self) -> SisSession:
        """Log in with the configured credentials.

        Uses the TOTP secret when one is configured, the password otherwise.
        Transport failures are retried up to `login_attempts` times in total.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.config.login_attempts),
            wait=wait_fixed(2),
            retry=retry_if_exception_type(TransportError),
            reraise=True,
        )
        return retrying(self._login_once)

    def scope(self) -> "SessionScope":
        return SessionScope(self)


class SessionScope:
    """Lazily logged-in session bound to a with-block.

    Login happens on first access to `session`, so a fully cached request
    never touches the SIS. Leaving the block logs out if a login happened.
    """

    def __init__(self, client: SisClient) -> None:
        self._client = client
        self._session: SisSession | None = None
        self._closed = False

    @property
    def active(self) -> bool:
        return self._session is not None and not self._session.closed

    @property
    def session(self) -> SisSession:
        if self._closed:
            raise SessionClosedError("Session scope already closed")
        if self._session is None:
            self._session = self._client.login()
        return self._session

    def close(self) -> None:
        self._closed = True
        if self._session is not None:
            self._session.logout()

    def __enter__(self) -> "SessionScope":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
