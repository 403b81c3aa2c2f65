"""Authentication strategies for helpdesk APIs.

Every strategy is applied to a request on *every* attempt, including retries.
Static strategies simply re-add the same header; the HMAC strategy draws a
fresh random salt and signature each time, because some platforms reject a
replayed signature.

Supported:
- BearerAuth: ``Authorization: Bearer <token>``
- ApiKeyHeaderAuth: arbitrary static header (e.g. ``X-Api-Key``)
- BasicAuth: ``Authorization: Basic base64(user:password)``
- HmacAuth: ``apikey`` + ``salt`` + ``signature=base64(HMAC-SHA256(secret, salt))``
"""

import base64
import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


@dataclass
class PreparedRequest:
    """A single HTTP attempt before it goes on the wire.

    Attributes:
        method: HTTP method
        url: Absolute URL without query string
        params: Query parameters
        headers: Request headers
        json: JSON body (REST+JSON platforms)
        data: Form fields (form-encoded platforms)
    """
    method: str
    url: str
    params: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    json: Optional[Any] = None
    data: Optional[Dict[str, str]] = None

    @property
    def sends_form(self) -> bool:
        return self.method.upper() not in ("GET", "DELETE")


class AuthStrategy(ABC):
    """Injects credentials into a prepared request."""

    @abstractmethod
    def apply(self, request: PreparedRequest) -> None:
        """Mutate the request in place for one attempt."""
        pass


class BearerAuth(AuthStrategy):
    def __init__(self, token: str):
        self.token = token

    def apply(self, request: PreparedRequest) -> None:
        request.headers["Authorization"] = f"Bearer {self.token}"


class ApiKeyHeaderAuth(AuthStrategy):
    def __init__(self, header_name: str, api_key: str):
        self.header_name = header_name
        self.api_key = api_key

    def apply(self, request: PreparedRequest) -> None:
        request.headers[self.header_name] = self.api_key


class BasicAuth(AuthStrategy):
    """HTTP Basic auth.

    Zendesk uses ``<email>/token:<token>``; Freshdesk uses ``<apiKey>:X``.
    """

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    @property
    def authorization_header(self) -> str:
        raw = f"{self.username}:{self.password}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def apply(self, request: PreparedRequest) -> None:
        request.headers["Authorization"] = self.authorization_header


def generate_signature(secret_key: str, salt: str) -> str:
    """Base64 HMAC-SHA256 of the salt keyed by the secret."""
    digest = hmac.new(secret_key.encode("utf-8"), salt.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class HmacAuth(AuthStrategy):
    """Salted HMAC signing (Kayako Classic).

    Credentials travel in the query string for GET/DELETE and in the
    form body for POST/PUT. A new salt is generated per attempt.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        salt_factory: Callable[[], str] = lambda: secrets.token_hex(16),
    ):
        self.api_key = api_key
        self.secret_key = secret_key
        self._salt_factory = salt_factory

    def sign(self) -> Dict[str, str]:
        salt = self._salt_factory()
        return {
            "apikey": self.api_key,
            "salt": salt,
            "signature": generate_signature(self.secret_key, salt),
        }

    def apply(self, request: PreparedRequest) -> None:
        auth_fields = self.sign()
        if request.sends_form:
            request.data = {**auth_fields, **(request.data or {})}
        else:
            request.params.update(auth_fields)
