"""Microsoft identity platform token provider (client credentials grant).

Issues app-only access tokens for Microsoft Graph. Caching is not done
here; CredentialCache wraps this provider.
"""

from __future__ import annotations

import httpx
import structlog

from src.minutes_bot.core.credentials import TokenGrant
from src.minutes_bot.errors import AuthFailure

logger = structlog.get_logger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
DEFAULT_EXPIRES_IN = 3600


class GraphTokenProvider:
    """Requests Graph tokens with the OAuth2 client credentials grant.

    Args:
        tenant_id: Azure AD tenant id.
        client_id: App registration client id.
        client_secret: App registration secret.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport, used in tests.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_url = (
            f"https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
        )
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._transport = transport

    async def refresh(self) -> TokenGrant:
        """Request a new access token.

        Returns:
            TokenGrant with the token and its lifetime in seconds.

        Raises:
            AuthFailure: On any transport or HTTP error, or a response
                without an access token.
        """
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": GRAPH_SCOPE,
            "grant_type": "client_credentials",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport,
            ) as client:
                response = await client.post(self._token_url, data=form)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "graph_auth.token_request_rejected",
                status=exc.response.status_code,
                response=exc.response.text[:500],
            )
            raise AuthFailure(
                f"Failed to get access token: {exc}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("graph_auth.token_request_failed", error=str(exc))
            raise AuthFailure(f"Failed to get access token: {exc}") from exc

        token = data.get("access_token")
        if not token:
            raise AuthFailure("Token response did not contain an access_token")

        return TokenGrant(
            token=token,
            expires_in=int(data.get("expires_in") or DEFAULT_EXPIRES_IN),
        )
