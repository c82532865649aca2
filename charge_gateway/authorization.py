"""
One authorization attempt against the identity provider.
Carries the per-login secrets (state, PKCE verifier, nonce), the URL the login starts from,
and the checks applied to the callback the provider redirects back to.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from dataclasses import dataclass
from urllib.parse import urlencode

from charge_gateway.errors import UnexpectedLoginResponseError


def _s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class AuthorizationRequest:
    redirect_uri: str
    url: str
    state: str
    code_verifier: str
    code_challenge: str
    nonce: str | None = None

    @classmethod
    def start(cls, *, authorize_url: str, client_id: str, redirect_uri: str, scope: str) -> "AuthorizationRequest":
        """Fresh state and S256 verifier for every login; a nonce only when openid is requested."""
        state = secrets.token_urlsafe(32)
        verifier = secrets.token_urlsafe(32)
        challenge = _s256(verifier)
        nonce = secrets.token_urlsafe(32) if "openid" in scope.split() else None

        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": scope,
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }
        if nonce:
            params["nonce"] = nonce
        # Hosted providers often put a policy or tenant in the endpoint's own query
        separator = "&" if "?" in authorize_url else "?"
        return cls(
            redirect_uri=redirect_uri,
            url=f"{authorize_url}{separator}{urlencode(params)}",
            state=state,
            code_verifier=verifier,
            code_challenge=challenge,
            nonce=nonce,
        )

    def is_callback(self, location: str) -> bool:
        return location.startswith(self.redirect_uri)

    def check_callback(self, params: dict[str, str]) -> None:
        if params.get("state") != self.state:
            raise UnexpectedLoginResponseError("State mismatch on login callback")

    def token_request(self, code: str) -> dict[str, str]:
        """Form body for the authorization_code exchange."""
        return {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": self.code_verifier,
        }
