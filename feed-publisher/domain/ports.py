"""
Ports (interfaces) for mqtt-feed service.
Following Dependency Inversion Principle - high-level modules depend on abstractions.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .schema import ConnectOptions, FeedType, RenderResult, TemplateFile


DisconnectHandler = Callable[[Optional[str]], None]


class TemplateStore(ABC):
    """
    Interface for loading the template file of a feed type.
    The file is re-read on every call; nothing is cached between cycles.
    """

    @abstractmethod
    def path_for(self, feed_type: Union[FeedType, str]) -> Path:
        """Resolve the template file path for a feed type."""
        pass

    @abstractmethod
    def load(self, feed_type: Union[FeedType, str]) -> Optional[TemplateFile]:
        """
        Load the template file for a feed type.

        Args:
            feed_type: Feed type whose template should be loaded

        Returns:
            Parsed template, or None when the file does not exist

        Raises:
            TemplateError: If the file exists but cannot be parsed
        """
        pass


class Renderer(ABC):
    """
    Interface for the token renderer.
    Must be deterministic for an identical live-data snapshot and tag set.
    """

    @abstractmethod
    def render(
        self,
        template_text: str,
        excluded_tags: Optional[Iterable[str]] = None
    ) -> RenderResult:
        """
        Render a template against current live data.

        Args:
            template_text: Raw template string
            excluded_tags: Tags that must not influence the comparison value

        Returns:
            RenderResult with output text and comparison value
        """
        pass


class DedupCache(ABC):
    """
    Interface for the last-published comparison values.
    Keyed by raw template text, not by topic name.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored comparison value or None when missing."""
        pass

    @abstractmethod
    async def upsert(self, key: str, value: str) -> None:
        """Insert or replace the comparison value for a key."""
        pass

    @abstractmethod
    async def reconcile(self, keys: Iterable[str]) -> int:
        """
        Drop every entry whose key is not in ``keys``.

        Returns:
            Number of removed entries
        """
        pass

    @abstractmethod
    async def size(self) -> int:
        """Return the number of stored entries."""
        pass

    async def close(self) -> None:
        """Release backend resources. In-process caches hold none."""
        return None


class BrokerClient(ABC):
    """
    Interface for the message broker transport.
    Can be implemented with paho-mqtt, gmqtt, etc.
    """

    @abstractmethod
    async def connect(self, options: ConnectOptions) -> None:
        """
        Open a new broker connection.

        Raises:
            BrokerConnectionError: If the connection cannot be established
        """
        pass

    @abstractmethod
    async def publish(self, topic: str, payload: str, retain: bool) -> None:
        """
        Publish one message.

        Raises:
            BrokerPublishError: If the transport rejects the message
        """
        pass

    @abstractmethod
    def on_disconnect(self, handler: DisconnectHandler) -> None:
        """
        Register a handler called once per lost connection.
        The handler runs on the event loop and receives a reason string.
        """
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the transport currently holds a live connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection without triggering disconnect handlers."""
        pass


class Publisher(ABC):
    """Interface for sending rendered messages to the broker."""

    @abstractmethod
    async def send(self, topic: str, message: str, retain: bool) -> bool:
        """
        Send one message.

        Returns:
            True if submitted to the broker, False if dropped
        """
        pass

    @abstractmethod
    def dispatch(self, topic: str, message: str, retain: bool) -> None:
        """Schedule a send without waiting for it to complete."""
        pass


class TokenValidator(ABC):
    """
    Interface for validating authentication tokens.
    Can be implemented with different token types (JWT, shared secret, etc.)
    """

    @abstractmethod
    async def validate_token(self, token: Optional[str]) -> bool:
        """
        Validate the provided authentication token.

        Args:
            token: The token to validate (from Authorization header)

        Returns:
            True if token is valid, False otherwise
        """
        pass


# Custom exceptions
class TemplateError(Exception):
    """Raised when a template file exists but cannot be parsed."""

    def __init__(self, path: Path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class BrokerConnectionError(Exception):
    """Raised when connecting to the broker fails."""
    pass


class BrokerPublishError(Exception):
    """Raised when the broker transport rejects a publish."""
    pass


class DedupCacheError(Exception):
    """Raised when the dedup cache backend fails."""
    pass


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass
