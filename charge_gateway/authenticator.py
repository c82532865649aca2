"""
Scripted login against the vendor's hosted identity provider.
Opens the authorization URL in a cookie-keeping HTTP session, waits for the login form,
submits the account credentials, follows redirects to the callback and turns the
code (or token fragment) into a credential record.
Never logs tokens, passwords or client secrets.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urljoin, urlsplit

import httpx
import jwt
from bs4 import BeautifulSoup

from charge_gateway.config import Credentials, DEFAULT_AUTH_TIMEOUT, DEFAULT_TOKEN_LIFETIME
from charge_gateway.errors import (
    AuthenticationError,
    AuthenticationTimeoutError,
    InvalidCredentialsError,
    UnexpectedLoginResponseError,
)
from charge_gateway.authorization import AuthorizationRequest
from charge_gateway.token_store import CredentialRecord, TokenStore

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 10

# Seconds between re-fetches while the provider has not rendered the form yet
FORM_POLL_INTERVAL = 0.5

# Callback errors that mean the account was refused rather than the flow breaking
CREDENTIAL_ERRORS = {"access_denied", "invalid_grant", "invalid_client", "login_required", "unauthorized_client"}

USERNAME_HINTS = ("email", "user", "login", "signin", "account")

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


@dataclass
class LoginForm:
    action: str
    method: str
    username_field: str
    password_field: str
    fields: dict[str, str] = field(default_factory=dict)


def find_login_form(html: str, page_url: str) -> LoginForm | None:
    """
    Return the first form with a password input and a username/email input, or None.
    Hidden and prefilled inputs are kept so they are posted back unchanged.
    """
    soup = BeautifulSoup(html, "html.parser")
    for form in soup.find_all("form"):
        password = form.find("input", attrs={"type": "password"})
        if password is None or not password.get("name"):
            continue

        username_field = None
        candidates = []
        fields = {}
        for inp in form.find_all("input"):
            name = inp.get("name")
            if not name:
                continue
            input_type = (inp.get("type") or "text").lower()
            if input_type == "email":
                username_field = username_field or name
            elif input_type == "text":
                candidates.append(name)
            if input_type in ("hidden", "text", "email") and inp.get("value") is not None:
                fields[name] = inp.get("value")
            elif input_type == "checkbox" and inp.has_attr("checked"):
                fields[name] = inp.get("value") or "on"

        if username_field is None:
            hinted = [n for n in candidates if any(h in n.lower() for h in USERNAME_HINTS)]
            username_field = (hinted or candidates or [None])[0]
        if username_field is None:
            continue

        return LoginForm(
            action=urljoin(page_url, form.get("action") or page_url),
            method=(form.get("method") or "post").upper(),
            username_field=username_field,
            password_field=password["name"],
            fields=fields,
        )
    return None


def parse_callback(url: str) -> dict[str, str]:
    """Query and fragment parameters of the callback URL, fragment taking precedence."""
    parts = urlsplit(url)
    params = {k: v[0] for k, v in parse_qs(parts.query).items()}
    params.update({k: v[0] for k, v in parse_qs(parts.fragment).items()})
    return params


def jwt_expiry(token: str) -> float | None:
    """exp claim of a JWT access token, read without verification. None if not a JWT."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


class Authenticator:
    """
    Performs the full login; saves the resulting record to the token store.
    On any failure the store is left untouched and an AuthenticationError subclass is raised.
    """

    def __init__(
        self,
        *,
        store: TokenStore,
        authorize_url: str,
        token_url: str,
        redirect_uri: str,
        scope: str,
        timeout: float = DEFAULT_AUTH_TIMEOUT,
        default_token_lifetime: int = DEFAULT_TOKEN_LIFETIME,
        poll_interval: float = FORM_POLL_INTERVAL,
        transport: httpx.AsyncBaseTransport | None = None,
        clock=time.time,
    ):
        self.store = store
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.redirect_uri = redirect_uri
        self.scope = scope
        self.timeout = timeout
        self.default_token_lifetime = default_token_lifetime
        self.poll_interval = poll_interval
        self._transport = transport
        self._clock = clock

    async def authenticate(self, credentials: Credentials) -> CredentialRecord:
        logger.info("Login started (client_id=%s)", credentials.oauth_client_id)
        try:
            record = await asyncio.wait_for(self._login(credentials), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Login timed out after %ss", self.timeout)
            raise AuthenticationTimeoutError(f"Login did not complete within {self.timeout:g}s") from None
        except AuthenticationError as e:
            logger.warning("Login failed (%s): %s", e.kind, e)
            raise
        self.store.save(record)
        logger.info("Login succeeded; token valid until %s", time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.expires_at)))
        return record

    async def _login(self, credentials: Credentials) -> CredentialRecord:
        request = AuthorizationRequest.start(
            authorize_url=self.authorize_url,
            client_id=credentials.oauth_client_id,
            redirect_uri=self.redirect_uri,
            scope=self.scope,
        )
        async with httpx.AsyncClient(
            transport=self._transport,
            headers=BROWSER_HEADERS,
            follow_redirects=False,
            timeout=self.timeout,
        ) as client:
            try:
                form, callback = await self._wait_for_login_form(client, request)
                if callback is None:
                    callback = await self._submit(client, request, form, credentials)
                params = parse_callback(callback)
                return await self._complete(client, request, params, credentials)
            except httpx.TransportError as e:
                raise AuthenticationTimeoutError(f"Network error during login: {e.__class__.__name__}") from e

    async def _navigate(
        self, client: httpx.AsyncClient, request: AuthorizationRequest, method: str, url: str, **kwargs
    ) -> tuple[httpx.Response, str | None]:
        """
        Issue a request and follow redirects by hand.
        Returns (last response, callback URL) where callback URL is set once a redirect targets redirect_uri.
        """
        for _ in range(MAX_REDIRECTS):
            response = await client.request(method, url, **kwargs)
            if not response.is_redirect:
                return response, None
            location = urljoin(str(response.url), response.headers["location"])
            if request.is_callback(location):
                return response, location
            if response.status_code not in (307, 308):
                method, kwargs = "GET", {}
            url = location
        raise UnexpectedLoginResponseError("Too many redirects during login")

    async def _wait_for_login_form(
        self, client: httpx.AsyncClient, request: AuthorizationRequest
    ) -> tuple[LoginForm | None, str | None]:
        """
        Poll the authorization page until the login form appears.
        Returns (form, None), or (None, callback URL) when the provider redirects straight back.
        """
        while True:
            response, callback = await self._navigate(client, request, "GET", request.url)
            if callback:
                # Provider skipped the form (existing session)
                return None, callback
            if response.status_code >= 400:
                raise UnexpectedLoginResponseError(f"Authorization page returned {response.status_code}")
            form = find_login_form(response.text, str(response.url))
            if form is not None:
                return form, None
            logger.debug("Login form not rendered yet; polling again in %ss", self.poll_interval)
            await asyncio.sleep(self.poll_interval)

    async def _submit(
        self, client: httpx.AsyncClient, request: AuthorizationRequest, form: LoginForm, credentials: Credentials
    ) -> str:
        data = dict(form.fields)
        data[form.username_field] = credentials.email
        data[form.password_field] = credentials.password
        if form.method == "GET":
            response, callback = await self._navigate(client, request, "GET", form.action, params=data)
        else:
            response, callback = await self._navigate(client, request, "POST", form.action, data=data)
        if callback:
            return callback
        if response.status_code in (400, 401, 403):
            raise InvalidCredentialsError(f"Identity provider rejected the login ({response.status_code})")
        if response.status_code < 400 and find_login_form(response.text, str(response.url)) is not None:
            raise InvalidCredentialsError("Identity provider re-displayed the login form")
        raise UnexpectedLoginResponseError(
            f"Login submit ended on {response.status_code} without redirecting to the callback"
        )

    async def _complete(
        self,
        client: httpx.AsyncClient,
        request: AuthorizationRequest,
        params: dict[str, str],
        credentials: Credentials,
    ) -> CredentialRecord:
        error = params.get("error")
        if error:
            description = params.get("error_description") or error
            if error in CREDENTIAL_ERRORS:
                raise InvalidCredentialsError(description)
            raise UnexpectedLoginResponseError(f"Identity provider returned error: {description}")
        request.check_callback(params)

        if params.get("access_token"):
            return self._build_record(
                credentials,
                access_token=params["access_token"],
                expires_in=params.get("expires_in"),
                token_type=params.get("token_type") or "Bearer",
            )
        code = params.get("code")
        if not code:
            raise UnexpectedLoginResponseError("Login callback carried neither code nor access_token")
        return await self._exchange_code(client, request, code, credentials)

    async def _exchange_code(
        self,
        client: httpx.AsyncClient,
        request: AuthorizationRequest,
        code: str,
        credentials: Credentials,
    ) -> CredentialRecord:
        response = await client.post(
            self.token_url,
            data=request.token_request(code),
            auth=(credentials.vendor_client_id, credentials.vendor_client_secret),
            headers={"Accept": "application/json"},
        )
        try:
            data = response.json()
        except ValueError:
            raise UnexpectedLoginResponseError(
                f"Token endpoint returned non-JSON response ({response.status_code})"
            ) from None
        if not isinstance(data, dict):
            raise UnexpectedLoginResponseError("Token endpoint returned unexpected JSON")

        if response.status_code != 200:
            error = data.get("error", "")
            description = data.get("error_description") or error or f"status {response.status_code}"
            if error in CREDENTIAL_ERRORS or response.status_code == 401:
                raise InvalidCredentialsError(f"Token exchange rejected: {description}")
            raise UnexpectedLoginResponseError(f"Token exchange failed: {description}")

        access_token = data.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise UnexpectedLoginResponseError("Token response has no access_token")
        return self._build_record(
            credentials,
            access_token=access_token,
            expires_in=data.get("expires_in"),
            token_type=data.get("token_type") or "Bearer",
        )

    def _build_record(self, credentials: Credentials, *, access_token: str, expires_in, token_type: str) -> CredentialRecord:
        now = self._clock()
        return CredentialRecord(
            access_token=access_token,
            expires_at=self._expires_at(access_token, expires_in, now),
            client_id=credentials.oauth_client_id,
            issued_at=now,
            token_type=token_type,
        )

    def _expires_at(self, access_token: str, expires_in, now: float) -> float:
        """Declared expires_in, else a future JWT exp claim, else the default lifetime."""
        if expires_in is not None:
            try:
                seconds = float(expires_in)
            except (TypeError, ValueError):
                logger.warning("Ignoring non-numeric expires_in from provider")
            else:
                if seconds > 0:
                    return now + seconds
        exp = jwt_expiry(access_token)
        if exp is not None:
            if exp > now:
                return exp
            # A record born expired would force a new login on every call
            logger.warning("Ignoring JWT exp claim that is not in the future; using default lifetime")
        return now + self.default_token_lifetime
