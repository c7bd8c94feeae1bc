"""Bearer token resolution for upload requests.

The relay only ever needs an opaque bearer token. Exchanging long-lived
credentials for one belongs to an external collaborator plugged in as a
CredentialExchanger; nothing here stores or refreshes credentials.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from streamrelay.transfer.errors import InvalidUploadRequest


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str = field(repr=False)
    refresh_token: str = field(repr=False)


class CredentialExchanger(ABC):
    """Turns a client-credential triple into a short-lived bearer token."""

    @abstractmethod
    async def exchange(self, credentials: ClientCredentials) -> str:
        ...


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an `Authorization: Bearer <token>` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


async def resolve_bearer_token(
    body_token: Optional[str] = None,
    authorization: Optional[str] = None,
    credentials: Optional[ClientCredentials] = None,
    exchanger: Optional[CredentialExchanger] = None,
) -> Optional[str]:
    """Pick the bearer token for a request.

    Precedence: explicit token in the body, then the Authorization header,
    then a credential exchange. Returns None when nothing was supplied so the
    request validation reports the missing token.
    """
    if body_token and body_token.strip():
        return body_token.strip()

    header_token = extract_bearer(authorization)
    if header_token:
        return header_token

    if credentials is not None:
        if exchanger is None:
            raise InvalidUploadRequest(
                "Client credentials were supplied but no credential exchange is configured",
                required=["auth_token"],
            )
        return await exchanger.exchange(credentials)

    return None
