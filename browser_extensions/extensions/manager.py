"""
Extension manager implementation.
This module installs extensions, keeps track of which ones are enabled and
mediates between them and live pages: script injection, request
interception, event dispatch and toolbar/context menu integration.
"""

import logging
import weakref
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from browser_extensions.extensions.bridge import MESSAGE_HANDLER_NAME, MessageBridge, wrap_script
from browser_extensions.extensions.builtin import create_builtin_extensions
from browser_extensions.extensions.events import ExtensionEvent
from browser_extensions.extensions.extension import (
    BaseExtension,
    ContextMenuItem,
    ExtensionScript,
    InjectionTime,
    ToolbarItem,
)
from browser_extensions.extensions.loader import load_extensions_from_directory
from browser_extensions.navigation.request import ExtensionRequest
from browser_extensions.navigation.surface import DocumentPhase
from browser_extensions.utils.config import DEFAULT_INSTALLED_KEY, Settings
from browser_extensions.utils.domains import host_from_url
from browser_extensions.utils.logging import log_exception

logger = logging.getLogger(__name__)

DEFAULT_INSTALLED = ["content-blocker"]

# Most recently navigated URLs whose scripts are kept per extension
SCRIPT_CACHE_SIZE = 32


@dataclass(frozen=True)
class UIItem:
    """A toolbar or context menu descriptor together with the extension owning it."""
    extension_id: str
    item: Union[ToolbarItem, ContextMenuItem]


class ExtensionManager:
    """
    Manager for browser extensions.

    All mutation is expected to happen on one control sequence (the UI
    thread of the embedding browser); the manager takes no locks.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize the extension manager.

        Args:
            settings: Settings store holding installed ids and preferences
        """
        self.settings = settings or Settings()
        self.bridge = MessageBridge(self)

        self._available: Dict[str, BaseExtension] = OrderedDict()
        self._installed: List[BaseExtension] = []
        self._by_id: Dict[str, BaseExtension] = {}

        # extension id -> {url: scripts} in least recently used order, plus the
        # revision they were computed at
        self._script_cache: Dict[str, "OrderedDict[str, List[ExtensionScript]]"] = {}
        self._script_revisions: Dict[str, int] = {}

        # Pages the bridge handler has been attached to
        self._bridged_pages = weakref.WeakSet()
        self._pinned_pages: Dict[int, Any] = {}

        self._initialized = False

    # ------------------------------------------------------------------
    # Catalog and lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Load the catalog and install extensions. Calling it again is a no-op.

        Built-ins are registered first, then extensions found in the user
        extensions directory. On first run the default subset is installed;
        afterwards the persisted installed ids are restored in order.
        """
        if self._initialized:
            return
        self._initialized = True

        for extension in create_builtin_extensions():
            self.register_available(extension)

        extensions_dir = self.settings.get("extensions.directory")
        js_filter = self.settings.get("extensions.security.js_filter", True)
        for extension in load_extensions_from_directory(extensions_dir, js_filter):
            if extension.id in self._available:
                logger.warning(f"Ignoring user extension {extension.id}: id already in use")
                continue
            self.register_available(extension)

        if self.settings.has_installed_ids():
            ids = self.settings.get_installed_ids()
        else:
            ids = self.settings.get(DEFAULT_INSTALLED_KEY, DEFAULT_INSTALLED)
            if not isinstance(ids, list):
                logger.warning(f"Ignoring malformed {DEFAULT_INSTALLED_KEY} value: {ids!r}")
                ids = list(DEFAULT_INSTALLED)

        for ext_id in ids:
            if ext_id not in self._available:
                logger.warning(f"Skipping unknown installed extension: {ext_id}")
                continue
            self.install(self._available[ext_id])

        self._rebuild_index()
        self._persist_installed()

        logger.info(f"Extension manager initialized ({len(self._installed)} of "
                    f"{len(self._available)} extensions installed)")

    def register_available(self, extension: BaseExtension) -> None:
        """Add an extension to the catalog without installing it."""
        if extension.id in self._available:
            logger.debug(f"Extension {extension.id} already in catalog")
            return
        self._available[extension.id] = extension

    def install(self, extension: BaseExtension) -> bool:
        """
        Install an extension.

        Args:
            extension: Extension to install

        Returns:
            bool: True if the extension was installed, False if it already was
                  or failed to initialize
        """
        if extension.id in self._by_id:
            logger.debug(f"Extension {extension.id} already installed")
            return False

        try:
            extension.initialize(self.settings)
        except Exception as e:
            log_exception(logger, e, f"Error initializing extension {extension.id}")
            return False

        self.register_available(extension)
        self._installed.append(extension)
        self._by_id[extension.id] = extension
        self._persist_installed()

        logger.info(f"Installed extension: {extension.id}")
        return True

    def install_by_id(self, extension_id: str) -> bool:
        """Install an extension from the catalog."""
        extension = self._available.get(extension_id)
        if extension is None:
            logger.warning(f"Extension {extension_id} is not in the catalog")
            return False
        return self.install(extension)

    def uninstall(self, extension_id: str) -> bool:
        """
        Uninstall an extension. Unknown ids are ignored.

        Args:
            extension_id: Extension ID

        Returns:
            bool: True if the extension was uninstalled
        """
        extension = self._by_id.pop(extension_id, None)
        if extension is None:
            return False

        self._call(extension, "cleanup", None)

        self._installed = [e for e in self._installed if e.id != extension_id]
        self.invalidate_scripts(extension_id)
        self.bridge.forget(extension_id)
        self._persist_installed()

        logger.info(f"Uninstalled extension: {extension_id}")
        return True

    def toggle(self, extension_id: str) -> bool:
        """
        Flip an extension's enabled flag. Unknown ids are ignored.

        Returns:
            bool: True if the extension exists
        """
        extension = self._by_id.get(extension_id)
        if extension is None:
            return False
        return self.set_enabled(extension_id, not extension.enabled)

    def set_enabled(self, extension_id: str, enabled: bool) -> bool:
        """
        Enable or disable an installed extension.

        Args:
            extension_id: Extension ID
            enabled: New state

        Returns:
            bool: True if the extension exists
        """
        extension = self._by_id.get(extension_id)
        if extension is None:
            return False

        extension.enabled = bool(enabled)
        self.invalidate_scripts(extension_id)
        self._call(extension, "save_preferences", None)

        logger.info(f"{'Enabled' if extension.enabled else 'Disabled'} extension: {extension_id}")
        return True

    def get(self, extension_id: str) -> Optional[BaseExtension]:
        """Get an installed extension by id."""
        return self._by_id.get(extension_id)

    def is_installed(self, extension_id: str) -> bool:
        return extension_id in self._by_id

    @property
    def installed(self) -> List[BaseExtension]:
        """Installed extensions in install order."""
        return list(self._installed)

    @property
    def available(self) -> List[BaseExtension]:
        """Every known extension in catalog order."""
        return list(self._available.values())

    @property
    def enabled_extensions(self) -> List[BaseExtension]:
        return [e for e in self._installed if e.enabled]

    def _rebuild_index(self) -> None:
        self._by_id = {extension.id: extension for extension in self._installed}

    def _persist_installed(self) -> None:
        try:
            self.settings.set_installed_ids([e.id for e in self._installed])
        except Exception as e:
            logger.error(f"Error persisting installed extensions: {e}")

    # ------------------------------------------------------------------
    # Guarded hook calls
    # ------------------------------------------------------------------

    def _call(self, extension: BaseExtension, hook: str, default: Any, *args) -> Any:
        """
        Call an extension hook, returning ``default`` if it raises.

        Args:
            extension: Extension to call
            hook: Method name
            default: Value returned on failure
            *args: Hook arguments

        Returns:
            Any: Hook result or default
        """
        try:
            return getattr(extension, hook)(*args)
        except Exception as e:
            log_exception(logger, e, f"Extension {extension.id} failed in {hook}")
            return default

    def _is_active(self, extension: BaseExtension, domain: str) -> bool:
        return bool(self._call(extension, "is_active_for_domain", False, domain))

    # ------------------------------------------------------------------
    # Script injection
    # ------------------------------------------------------------------

    def invalidate_scripts(self, extension_id: Optional[str] = None) -> None:
        """
        Drop cached scripts.

        Args:
            extension_id: Extension whose cache to drop, or None for all
        """
        if extension_id is None:
            self._script_cache.clear()
            self._script_revisions.clear()
        else:
            self._script_cache.pop(extension_id, None)
            self._script_revisions.pop(extension_id, None)

    def _scripts_for(self, extension: BaseExtension, url: str) -> List[ExtensionScript]:
        if self._script_revisions.get(extension.id) != extension.revision:
            self._script_cache.pop(extension.id, None)
            self._script_revisions[extension.id] = extension.revision

        cache = self._script_cache.setdefault(extension.id, OrderedDict())
        if url in cache:
            cache.move_to_end(url)
            return cache[url]

        scripts = self._call(extension, "get_scripts_to_inject", None, url) or []
        cache[url] = [s for s in scripts if isinstance(s, ExtensionScript)]
        while len(cache) > SCRIPT_CACHE_SIZE:
            cache.popitem(last=False)
        return cache[url]

    def prepare_content_for_navigation(self, page: Any, url: str) -> int:
        """
        Register the scripts of every active extension for a navigation.

        Previously registered scripts are cleared first, so preparing the same
        page again never injects a script twice.

        Args:
            page: Page or surface receiving the scripts
            url: URL about to be loaded

        Returns:
            int: Number of registered scripts
        """
        try:
            page.clear_scripts()
        except Exception as e:
            log_exception(logger, e, "Error clearing page scripts")

        domain = host_from_url(url)
        extensions = [e for e in self._installed
                      if e.enabled and e.can_inject_scripts and self._is_active(e, domain)]

        count = 0
        for timing in InjectionTime:
            phase = DocumentPhase.DOCUMENT_START if timing.at_document_start else DocumentPhase.DOCUMENT_END
            for extension in extensions:
                for script in self._scripts_for(extension, url):
                    if script.timing != timing or not script.applies_to(url):
                        continue
                    try:
                        page.register_script(wrap_script(script.source, extension.id), phase,
                                             main_frame_only=True)
                        count += 1
                    except Exception as e:
                        log_exception(logger, e, f"Error registering script of {extension.id}")

        self._attach_bridge(page)
        self.notify(ExtensionEvent.document_start(url))

        logger.debug(f"Prepared {count} scripts for {url}")
        return count

    def _attach_bridge(self, page: Any) -> None:
        if page in self._bridged_pages or id(page) in self._pinned_pages:
            return

        # Mark the page first so a failing mark never attaches the handler twice
        try:
            self._bridged_pages.add(page)
        except TypeError:
            # Not weakly referenceable; keep it alive so its id stays unique
            self._pinned_pages[id(page)] = page

        try:
            page.add_message_handler(MESSAGE_HANDLER_NAME, self.handle_script_message)
        except Exception as e:
            if self._pinned_pages.pop(id(page), None) is None:
                self._bridged_pages.discard(page)
            log_exception(logger, e, "Error attaching extension message handler")

    def handle_script_message(self, body: Any) -> bool:
        """Entry point for messages posted by injected scripts."""
        return self.bridge.handle_message(body)

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------

    def _request_extensions(self, request: ExtensionRequest) -> List[BaseExtension]:
        domain = request.host
        return [e for e in self._installed
                if e.enabled
                and (e.can_modify_requests or e.can_modify_headers)
                and self._is_active(e, domain)]

    def should_block_request(self, request: ExtensionRequest) -> bool:
        """
        Decide whether to block a request. Any extension can veto it.

        Args:
            request: Outgoing request

        Returns:
            bool: True if some extension blocks the request
        """
        for extension in self._request_extensions(request):
            if self._call(extension, "should_block_request", False, request):
                logger.debug(f"Request to {request.url} blocked by {extension.id}")
                self.notify(ExtensionEvent.content_blocked(request.url, request=request,
                                                           extension_id=extension.id))
                return True
        return False

    def modify_request(self, request: ExtensionRequest) -> ExtensionRequest:
        """
        Pass a request through every extension in install order.

        Args:
            request: Outgoing request

        Returns:
            ExtensionRequest: The request as modified by all extensions
        """
        for extension in self._request_extensions(request):
            result = self._call(extension, "modify_request", request, request)
            if not isinstance(result, ExtensionRequest):
                logger.warning(f"Extension {extension.id} returned {type(result).__name__} "
                               f"from modify_request, ignoring")
                continue
            request = result
        return request

    def modify_response(self, request: ExtensionRequest, body: bytes) -> bytes:
        """Pass a response body through every extension in install order."""
        for extension in self._request_extensions(request):
            result = self._call(extension, "modify_response", body, request, body)
            if not isinstance(result, (bytes, bytearray)):
                logger.warning(f"Extension {extension.id} returned {type(result).__name__} "
                               f"from modify_response, ignoring")
                continue
            body = bytes(result)
        return body

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def notify(self, event: ExtensionEvent) -> None:
        """
        Deliver an event to every enabled extension active for its domain.

        Events without a domain go to every enabled extension.
        """
        domain = event.domain
        for extension in list(self._installed):
            if not extension.enabled:
                continue
            if domain is not None and not self._is_active(extension, domain):
                continue
            self.deliver_event(extension, event)

    def deliver_event(self, extension: BaseExtension, event: ExtensionEvent) -> None:
        """Deliver an event to a single extension."""
        if not extension.enabled or extension.id not in self._by_id:
            logger.debug(f"Dropping {event.type.value} event for inactive extension {extension.id}")
            return
        self._call(extension, "handle_event", None, event)

    def notify_page_loaded(self, url: str) -> None:
        self.notify(ExtensionEvent.page_load(url))

    def notify_page_unloaded(self, url: str) -> None:
        self.notify(ExtensionEvent.page_unload(url))

    def notify_document_end(self, url: str) -> None:
        self.notify(ExtensionEvent.document_end(url))

    def notify_form_submitted(self, url: str, form_data: Dict[str, str]) -> None:
        self.notify(ExtensionEvent.form_submission(url, form_data))

    def notify_context_menu(self, url: str, selected_text: Optional[str] = None) -> None:
        self.notify(ExtensionEvent.context_menu_activated(url, selected_text))

    def notify_navigation_failed(self, url: Optional[str], error: Exception) -> None:
        """
        Report a rendering-surface failure to the extensions active for the URL.

        Args:
            url: URL that failed to load, if known
            error: Error reported by the surface
        """
        logger.warning(f"Navigation to {url} failed: {error}")
        domain = host_from_url(url)
        for extension in list(self._installed):
            if not extension.enabled:
                continue
            if domain and not self._is_active(extension, domain):
                continue
            self._call(extension, "on_navigation_failed", None, url, error)

    # ------------------------------------------------------------------
    # UI integration
    # ------------------------------------------------------------------

    def _ui_extensions(self, page: Any) -> List[BaseExtension]:
        domain = host_from_url(getattr(page, "url", None))
        return [e for e in self._installed
                if e.enabled and e.can_integrate_toolbar and self._is_active(e, domain)]

    def toolbar_items(self, page: Any) -> List[UIItem]:
        """
        Collect toolbar items for a page.

        Args:
            page: Current page

        Returns:
            List[UIItem]: Items in install order
        """
        items = []
        for extension in self._ui_extensions(page):
            item = self._call(extension, "toolbar_item_for", None, page)
            if isinstance(item, ToolbarItem):
                items.append(UIItem(extension.id, item))
        return items

    def context_menu_items(self, page: Any, selection: Optional[str] = None) -> List[UIItem]:
        """
        Collect context menu items for a page.

        Items requiring a text selection are only included when a non-empty
        selection is given.

        Args:
            page: Current page
            selection: Selected text, if any

        Returns:
            List[UIItem]: Items in install order
        """
        has_selection = bool(selection and selection.strip())

        items = []
        for extension in self._ui_extensions(page):
            try:
                extension_items = list(extension.context_menu_items or [])
            except Exception as e:
                log_exception(logger, e, f"Extension {extension.id} failed in context_menu_items")
                continue

            for item in extension_items:
                if not isinstance(item, ContextMenuItem):
                    continue
                if item.requires_selection and not has_selection:
                    continue
                items.append(UIItem(extension.id, item))
        return items

    def dispatch_toolbar_tap(self, extension_id: str, page: Any) -> bool:
        """
        Route a toolbar tap to an extension. Unknown ids are ignored.

        Returns:
            bool: True if the extension exists
        """
        extension = self._by_id.get(extension_id)
        if extension is None:
            return False

        # Handlers may reload the page from inside the call
        self.invalidate_scripts(extension_id)
        self._call(extension, "on_toolbar_item_tapped", None, page)
        self.invalidate_scripts(extension_id)

        self.deliver_event(extension, ExtensionEvent.action_clicked())
        return True

    def dispatch_context_menu_selection(self, extension_id: str, item_id: str, page: Any) -> bool:
        """
        Route a context menu selection to an extension. Unknown ids are ignored.

        Returns:
            bool: True if the extension exists
        """
        extension = self._by_id.get(extension_id)
        if extension is None:
            return False

        self.invalidate_scripts(extension_id)
        self._call(extension, "on_context_menu_item_selected", None, item_id, page)
        self.invalidate_scripts(extension_id)
        return True
