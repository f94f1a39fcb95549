"""
Credential provider for the Azure Monitor Log Analytics API.

Acquires an async azure-identity credential, validates it by requesting a
token for the Log Analytics scope, and caches it until reset.

Supported Authentication Methods:
    - Service Principal (Secret): client ID/secret/tenant, explicit or via
      AZURE_CLIENT_ID / AZURE_CLIENT_SECRET / AZURE_TENANT_ID
    - Default Azure Credential: azure-identity's credential chain
      (managed identity, environment variables, Azure CLI, etc.)

Example:
    >>> provider = LogAnalyticsCredentialProvider(workspace_id="...")
    >>> credential = await provider.authenticate()
    >>> client = LogsQueryClient(credential)
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Optional

from azure.core.credentials_async import AsyncTokenCredential
from azure.identity.aio import ClientSecretCredential, DefaultAzureCredential

from core.errors.exceptions import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

LOG_ANALYTICS_SCOPE = "https://api.loganalytics.io/.default"

DEFAULT_MAX_ATTEMPTS = 3
BASE_BACKOFF_MS = 1000
MAX_BACKOFF_MS = 10000


def auth_backoff_ms(attempt: int) -> int:
    """Delay after the given 1-indexed failed attempt."""
    return min(BASE_BACKOFF_MS * 2 ** (attempt - 1), MAX_BACKOFF_MS)


class LogAnalyticsCredentialProvider:
    """
    Owns the credential used for Log Analytics queries.

    authenticate() is idempotent: the first successful credential is cached
    and returned until reset() is called.

    Attributes:
        workspace_id: Log Analytics workspace the credential is used against
        max_attempts: Acquisition attempts before giving up
    """

    def __init__(
        self,
        workspace_id: str,
        credential_factory: Optional[Callable[[], AsyncTokenCredential]] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ):
        """
        Initialize credential provider.

        Args:
            workspace_id: Log Analytics workspace ID (must not be blank)
            credential_factory: Builds a fresh async credential; defaults to
                ClientSecretCredential when SPN settings are available,
                DefaultAzureCredential otherwise
            max_attempts: Acquisition attempts before AuthenticationError
            sleep: Awaitable sleep used between attempts
            client_id: Azure AD client ID (for SPN)
            client_secret: Client secret (for SPN)
            tenant_id: Azure AD tenant ID (for SPN)

        Raises:
            ConfigurationError: If workspace_id is empty or whitespace
        """
        if not workspace_id or not str(workspace_id).strip():
            raise ConfigurationError("workspace_id must not be empty")
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {max_attempts}")

        self.workspace_id = str(workspace_id).strip()
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._credential: Optional[AsyncTokenCredential] = None

        self.client_id = client_id or os.getenv("AZURE_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("AZURE_CLIENT_SECRET")
        self.tenant_id = tenant_id or os.getenv("AZURE_TENANT_ID")
        self._credential_factory = credential_factory or self._default_credential_factory

    @property
    def auth_mode(self) -> str:
        if self.client_id and self.client_secret and self.tenant_id:
            return "spn"
        return "default"

    @property
    def credential(self) -> Optional[AsyncTokenCredential]:
        return self._credential

    def get_workspace_id(self) -> str:
        return self.workspace_id

    def _default_credential_factory(self) -> AsyncTokenCredential:
        if self.auth_mode == "spn":
            return ClientSecretCredential(
                tenant_id=self.tenant_id,
                client_id=self.client_id,
                client_secret=self.client_secret,
            )
        return DefaultAzureCredential()

    async def _acquire(self) -> AsyncTokenCredential:
        credential = self._credential_factory()
        try:
            token = await credential.get_token(LOG_ANALYTICS_SCOPE)
            if token is None or not getattr(token, "token", None):
                raise AuthenticationError(
                    "Credential validation returned an empty token",
                    attempts=0,
                )
        except Exception:
            await _close_quietly(credential)
            raise
        return credential

    async def authenticate(self) -> AsyncTokenCredential:
        """
        Return the cached credential, acquiring and validating one if needed.

        Raises:
            AuthenticationError: All attempts failed; carries the attempt
                count and the last underlying error
        """
        if self._credential is not None:
            return self._credential

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._credential = await self._acquire()
            except Exception as e:
                last_error = e
                if attempt >= self.max_attempts:
                    break
                delay_ms = auth_backoff_ms(attempt)
                logger.warning(
                    "Log Analytics authentication failed, will retry",
                    extra={
                        "operation": "authenticate",
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "delay_seconds": delay_ms / 1000.0,
                        "auth_mode": self.auth_mode,
                        "error_message": str(e)[:200],
                    },
                )
                await self._sleep(delay_ms / 1000.0)
                continue

            logger.info(
                "Authenticated to Log Analytics",
                extra={
                    "operation": "authenticate",
                    "attempt": attempt,
                    "auth_mode": self.auth_mode,
                    "workspace_id": self.workspace_id,
                },
            )
            return self._credential

        logger.error(
            "Log Analytics authentication failed after %d attempts",
            self.max_attempts,
            extra={
                "operation": "authenticate",
                "max_attempts": self.max_attempts,
                "auth_mode": self.auth_mode,
                "error_message": str(last_error)[:200],
            },
        )
        raise AuthenticationError(
            f"Failed to authenticate after {self.max_attempts} attempts",
            attempts=self.max_attempts,
            cause=last_error,
        )

    def is_authenticated(self) -> bool:
        return self._credential is not None

    def reset(self) -> None:
        """
        Drop the cached credential so the next authenticate() re-acquires.

        The dropped credential is not closed here; call close() first when
        its transport should be released.
        """
        self._credential = None
        logger.debug("Cleared cached Log Analytics credential")

    async def close(self) -> None:
        if self._credential is not None:
            await _close_quietly(self._credential)
            self._credential = None


async def _close_quietly(credential: AsyncTokenCredential) -> None:
    close = getattr(credential, "close", None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:
        logger.debug("Error closing credential: %s", e)


__all__ = [
    "LogAnalyticsCredentialProvider",
    "LOG_ANALYTICS_SCOPE",
    "auth_backoff_ms",
]
