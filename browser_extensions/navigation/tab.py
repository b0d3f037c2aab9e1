"""
Browser tab.
A tab owns one rendering surface and runs every navigation through the
extension manager: request blocking and rewriting, script preparation and
page lifecycle events.
"""

import logging
from typing import Any, Callable, Optional, Set

from browser_extensions.extensions.bridge import push_command
from browser_extensions.navigation.request import ExtensionRequest
from browser_extensions.navigation.surface import (
    DocumentPhase,
    NavigationDelegate,
    RenderingSurface,
    StoragePartition,
)
from browser_extensions.utils.domains import SPECIAL_SCHEMES

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """
    Normalize typed input into a loadable URL.

    Args:
        url: URL or bare host

    Returns:
        str: URL with a scheme (https by default)
    """
    url = (url or "").strip()
    if not url:
        return url
    if "://" in url or any(url.startswith(f"{scheme}:") for scheme in SPECIAL_SCHEMES):
        return url
    return "https://" + url


class BrowserTab(NavigationDelegate):
    """A single tab, also acting as the page handed to extensions."""

    def __init__(self, surface: RenderingSurface, manager, is_private: bool = False,
                 on_open_tab: Optional[Callable[[str], None]] = None):
        """
        Initialize the tab.

        Args:
            surface: Rendering surface displaying the tab's content
            manager: Extension manager consulted on every navigation
            is_private: Use an ephemeral storage partition
            on_open_tab: Called with a URL when the tab asks for a new tab
        """
        self.surface = surface
        self.manager = manager
        self.is_private = is_private
        self.on_open_tab = on_open_tab

        self.title = ""
        self.can_go_back = False
        self.can_go_forward = False
        self.is_loading = False

        # Last committed URL and the one being loaded
        self.current_url: Optional[str] = None
        self.pending_url: Optional[str] = None

        self._custom_headers: Set[str] = set()

        surface.storage_partition = StoragePartition.EPHEMERAL if is_private else StoragePartition.PERSISTENT
        surface.delegate = self

    @property
    def url(self) -> Optional[str]:
        return self.current_url or self.pending_url or self.surface.url

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def load(self, url: str) -> bool:
        """
        Navigate to a URL.

        Args:
            url: URL or bare host

        Returns:
            bool: False if the navigation was blocked or failed to start
        """
        url = normalize_url(url)
        if not url:
            return False

        request = ExtensionRequest(url)
        if self.manager.should_block_request(request):
            logger.info(f"Navigation to {url} blocked by an extension")
            return False

        self._apply_request(self.manager.modify_request(request))
        self.manager.prepare_content_for_navigation(self, url)

        self.pending_url = url
        try:
            self.surface.load(url)
        except Exception as e:
            logger.error(f"Error loading {url}: {e}")
            self.on_fail(e)
            return False

        return True

    def _apply_request(self, request: ExtensionRequest) -> None:
        """Push the headers extensions set on the request to the surface."""
        self.surface.set_user_agent(request.user_agent)

        headers = {name: value for name, value in request.header_items().items()
                   if name.lower() != "user-agent"}

        for name in self._custom_headers - set(headers):
            self.surface.set_custom_header(name, None)
        for name, value in headers.items():
            self.surface.set_custom_header(name, value)

        self._custom_headers = set(headers)

    def reload(self) -> None:
        """Reload the page, re-preparing extension scripts first."""
        url = self.url
        if url:
            self.manager.prepare_content_for_navigation(self, url)
        self.surface.reload()

    def stop(self) -> None:
        self.surface.stop()
        self.is_loading = False

    def open_in_new_tab(self, url: str) -> bool:
        """
        Ask the browser to open a URL in a new tab.

        Returns:
            bool: False if nobody handles new tabs
        """
        if self.on_open_tab is None:
            logger.debug(f"No new-tab handler for {url}")
            return False
        self.on_open_tab(normalize_url(url))
        return True

    # ------------------------------------------------------------------
    # Page interface used by extensions and the manager
    # ------------------------------------------------------------------

    def register_script(self, source: str, phase: DocumentPhase, main_frame_only: bool = True) -> None:
        self.surface.register_script(source, phase, main_frame_only)

    def clear_scripts(self) -> None:
        self.surface.clear_scripts()

    def add_message_handler(self, name: str, callback: Callable[[Any], None]) -> None:
        self.surface.add_message_handler(name, callback)

    def evaluate_javascript(self, source: str) -> None:
        self.surface.evaluate_javascript(source)

    def send_command(self, command, extension_id: Optional[str] = None) -> bool:
        """Push a command to the page-side extension listeners."""
        return push_command(self, command, extension_id)

    # ------------------------------------------------------------------
    # NavigationDelegate
    # ------------------------------------------------------------------

    def on_start(self, url: str) -> None:
        self.is_loading = True
        self.pending_url = url
        logger.debug(f"Navigation started: {url}")

    def on_finish(self, title: str, can_go_back: bool, can_go_forward: bool, final_url: str) -> None:
        previous = self.current_url

        self.title = title or ""
        self.can_go_back = can_go_back
        self.can_go_forward = can_go_forward
        self.is_loading = False
        self.current_url = final_url
        self.pending_url = None

        if previous:
            self.manager.notify_page_unloaded(previous)
        self.manager.notify_page_loaded(final_url)
        self.manager.notify_document_end(final_url)

    def on_fail(self, error: Exception) -> None:
        url = self.pending_url or self.current_url
        self.is_loading = False
        self.pending_url = None
        self.manager.notify_navigation_failed(url, error)
