"""
Bearer token authentication for the mqtt-feed write endpoints.

The shared token lives in a file (Docker secret). The file is re-read
whenever its modification time changes, so a rotated secret takes effect
without a restart.
"""

import hmac
import logging
from pathlib import Path
from typing import Optional, Union

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from domain.ports import TokenValidator, AuthenticationError


logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 16

bearer_scheme = HTTPBearer(auto_error=False, description="Shared mqtt-feed token")


class FileTokenValidator(TokenValidator):
    """
    Compares bearer tokens against the content of a token file.
    """

    def __init__(self, token_file_path: Union[str, Path]):
        """
        Load the token file.

        Args:
            token_file_path: Path to file containing the shared token

        Raises:
            AuthenticationError: If the file is missing, unreadable or empty
        """
        self.token_file_path = Path(token_file_path)
        self._token: Optional[bytes] = None
        self._loaded_mtime_ns: Optional[int] = None
        self.refresh()

    def refresh(self) -> bool:
        """
        Reload the token if the file changed since the last load.

        Returns:
            True if a new token was loaded

        Raises:
            AuthenticationError: If the file cannot be read or is empty
        """
        try:
            mtime_ns = self.token_file_path.stat().st_mtime_ns
            if mtime_ns == self._loaded_mtime_ns:
                return False
            token = self.token_file_path.read_text(encoding='utf-8').strip()
        except OSError as e:
            raise AuthenticationError(f"Cannot read token file {self.token_file_path}: {e}") from e

        if not token:
            raise AuthenticationError(f"Token file is empty: {self.token_file_path}")

        if len(token) < MIN_TOKEN_LENGTH:
            logger.warning(
                f"Shared token is shorter than {MIN_TOKEN_LENGTH} characters",
                extra={"component": "auth"}
            )

        self._token = token.encode('utf-8')
        self._loaded_mtime_ns = mtime_ns
        logger.info(
            f"Loaded shared token from {self.token_file_path}",
            extra={"component": "auth"}
        )
        return True

    async def validate_token(self, token: Optional[str]) -> bool:
        if not token:
            return False

        try:
            self.refresh()
        except AuthenticationError as e:
            # The last good token stays active while the file is being replaced
            logger.error(f"Shared token reload failed: {e}", extra={"component": "auth"})

        if self._token is None:
            return False

        is_valid = hmac.compare_digest(token.encode('utf-8'), self._token)
        if not is_valid:
            logger.warning("Invalid token provided", extra={"component": "auth"})
        return is_valid


class BearerAuth:
    """
    FastAPI dependency guarding the write endpoints.
    Every request passes when no validator is configured.
    """

    def __init__(self, token_validator: Optional[TokenValidator] = None):
        self.token_validator = token_validator

    @property
    def enabled(self) -> bool:
        return self.token_validator is not None

    async def __call__(
        self,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
    ) -> bool:
        """
        Raises:
            AuthenticationError: If the bearer token is missing or wrong
        """
        if not self.enabled:
            return True

        token = credentials.credentials if credentials else None
        if not await self.token_validator.validate_token(token):
            raise AuthenticationError("Invalid or missing bearer token")
        return True
