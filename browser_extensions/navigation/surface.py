"""
Interface of the embeddable web-rendering surface.

The extension subsystem never renders anything itself. It drives whatever
engine the browser embeds through this small interface.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional


class StoragePartition(Enum):
    """Where a surface keeps cookies, local storage and caches."""
    PERSISTENT = "persistent"
    EPHEMERAL = "ephemeral"


class DocumentPhase(Enum):
    """Point at which the surface runs a registered script."""
    DOCUMENT_START = "document_start"
    DOCUMENT_END = "document_end"


class NavigationDelegate:
    """
    Navigation callbacks reported by a surface.

    Surfaces call these from their own scheduling; implementations must not
    assume callbacks arrive in order relative to other navigations.
    """

    def on_start(self, url: str) -> None:
        pass

    def on_finish(self, title: str, can_go_back: bool, can_go_forward: bool, final_url: str) -> None:
        pass

    def on_fail(self, error: Exception) -> None:
        pass


class RenderingSurface(ABC):
    """Embeddable web view used by a tab."""

    storage_partition: StoragePartition = StoragePartition.PERSISTENT
    delegate: Optional[NavigationDelegate] = None

    @property
    @abstractmethod
    def url(self) -> Optional[str]:
        """URL currently committed in the surface."""

    @abstractmethod
    def load(self, url: str) -> None:
        """Start loading a URL."""

    @abstractmethod
    def reload(self) -> None:
        """Reload the current page."""

    @abstractmethod
    def stop(self) -> None:
        """Stop loading."""

    @abstractmethod
    def register_script(self, source: str, phase: DocumentPhase, main_frame_only: bool = True) -> None:
        """Register a user script for subsequent navigations."""

    @abstractmethod
    def clear_scripts(self) -> None:
        """Remove every registered user script."""

    @abstractmethod
    def add_message_handler(self, name: str, callback: Callable[[Any], None]) -> None:
        """Subscribe to script messages posted to the named handler."""

    @abstractmethod
    def evaluate_javascript(self, source: str) -> None:
        """Evaluate JavaScript in the current page (fire-and-forget)."""

    @abstractmethod
    def set_custom_header(self, name: str, value: Optional[str]) -> None:
        """Set (or clear, with None) a header sent with page requests."""

    @abstractmethod
    def set_user_agent(self, user_agent: Optional[str]) -> None:
        """Override the user agent (None restores the engine default)."""
