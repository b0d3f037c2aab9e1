"""
Extension model.

An extension is described by its metadata, the permissions it declares, the
capabilities it uses and an activation rule. ``BaseExtension`` supplies a safe
default for every hook so concrete extensions only override what they use.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from browser_extensions.extensions.activation import ActivationState, Custom, ALWAYS
from browser_extensions.extensions.events import ExtensionEvent
from browser_extensions.utils.domains import host_from_url, normalize_domain
from browser_extensions.utils.logging import ExtensionLogAdapter

logger = logging.getLogger(__name__)


class ExtensionCategory(Enum):
    CONTENT_BLOCKER = "Content Blocker"
    WEB_ENHANCEMENT = "Web Enhancement"
    SECURITY = "Security"
    PRIVACY = "Privacy"
    APPEARANCE = "Appearance"
    MEDIA = "Media"
    PRODUCTIVITY = "Productivity"
    SHOPPING = "Shopping"
    SOCIAL = "Social"
    DEVELOPER = "Developer Tools"
    OTHER = "Other"


# Permission -> (description, icon)
PERMISSION_INFO = {
    "read_browsing_history": ("Access your browsing history", "clock"),
    "read_current_page": ("Read the content of webpages you visit", "doc.text"),
    "modify_web_content": ("Change the content of webpages you visit", "pencil"),
    "block_content": ("Block content from loading on websites", "shield"),
    "access_browsing_data": ("Access your browsing data including history and bookmarks", "folder"),
    "access_cookies": ("Access and modify cookies from websites", "tray"),
    "access_downloads": ("Access your downloads and download history", "arrow.down.circle"),
    "access_camera": ("Access your device's camera", "camera"),
    "access_microphone": ("Access your device's microphone", "mic"),
    "access_location": ("Access your device's location", "location"),
    "show_notifications": ("Show notifications on your device", "bell"),
    "access_clipboard": ("Access your clipboard content", "doc.on.clipboard"),
    "modify_headers": ("Modify request headers sent to websites", "arrow.left.arrow.right"),
}


class ExtensionPermission(Enum):
    READ_BROWSING_HISTORY = "read_browsing_history"
    READ_CURRENT_PAGE = "read_current_page"
    MODIFY_WEB_CONTENT = "modify_web_content"
    BLOCK_CONTENT = "block_content"
    ACCESS_BROWSING_DATA = "access_browsing_data"
    ACCESS_COOKIES = "access_cookies"
    ACCESS_DOWNLOADS = "access_downloads"
    ACCESS_CAMERA = "access_camera"
    ACCESS_MICROPHONE = "access_microphone"
    ACCESS_LOCATION = "access_location"
    SHOW_NOTIFICATIONS = "show_notifications"
    ACCESS_CLIPBOARD = "access_clipboard"
    MODIFY_HEADERS = "modify_headers"

    @property
    def description(self) -> str:
        return PERMISSION_INFO[self.value][0]

    @property
    def icon(self) -> str:
        return PERMISSION_INFO[self.value][1]


class Capability(Enum):
    INJECT_SCRIPTS = "inject_scripts"
    MODIFY_REQUESTS = "modify_requests"
    MODIFY_HEADERS = "modify_headers"
    ACCESS_USER_DATA = "access_user_data"
    DISPLAY_OVERLAY = "display_overlay"
    INTEGRATE_TOOLBAR = "integrate_toolbar"


class InjectionTime(Enum):
    """When an extension script runs during page load."""
    BEFORE_DOCUMENT = "before_document"
    AFTER_DOCUMENT = "after_document"
    ON_DOM_READY = "on_dom_ready"
    ON_PAGE_COMPLETE = "on_page_complete"

    @property
    def at_document_start(self) -> bool:
        """Whether the surface must register the script at document start."""
        return self in (InjectionTime.BEFORE_DOCUMENT, InjectionTime.AFTER_DOCUMENT)


class IconKind(Enum):
    SYSTEM = "system"
    IMAGE = "image"
    DATA = "data"


@dataclass(frozen=True)
class ExtensionIcon:
    kind: IconKind
    value: Any

    @classmethod
    def system(cls, name: str) -> "ExtensionIcon":
        return cls(IconKind.SYSTEM, name)

    @classmethod
    def image(cls, name: str) -> "ExtensionIcon":
        return cls(IconKind.IMAGE, name)

    @classmethod
    def data(cls, data: bytes) -> "ExtensionIcon":
        return cls(IconKind.DATA, data)


DEFAULT_ICON = ExtensionIcon.system("puzzlepiece.extension")


@dataclass(frozen=True)
class ExtensionScript:
    """Script source plus when and where to inject it."""

    source: str
    timing: InjectionTime = InjectionTime.ON_PAGE_COMPLETE
    for_url: Optional[str] = None

    def applies_to(self, url: str) -> bool:
        """
        Check whether the script targets a URL.

        Scripts without a target apply everywhere; targeted scripts apply to
        every URL on the target's host.
        """
        if self.for_url is None:
            return True
        return host_from_url(self.for_url) == host_from_url(url)


@dataclass(frozen=True)
class ToolbarItem:
    id: str
    title: str
    icon: ExtensionIcon = DEFAULT_ICON
    show_label: bool = False
    badge: Optional[str] = None


@dataclass(frozen=True)
class ContextMenuItem:
    id: str
    title: str
    icon: ExtensionIcon = DEFAULT_ICON
    requires_selection: bool = False


class BaseExtension:
    """
    Base class for extensions.

    Every hook has a safe default: no scripts, no blocking, unmodified
    requests and responses, ignored events. Hooks must be fast; anything slow
    has to be deferred by the extension itself.
    """

    def __init__(self,
                 id: str,
                 name: str,
                 version: str,
                 description: str = "",
                 author: str = "",
                 icon: ExtensionIcon = DEFAULT_ICON,
                 enabled: bool = True,
                 category: ExtensionCategory = ExtensionCategory.OTHER,
                 website: Optional[str] = None,
                 permissions: Sequence[ExtensionPermission] = (),
                 capabilities: Sequence[Capability] = (),
                 activation_state: ActivationState = ALWAYS):
        self._id = id
        self._name = name
        self._version = version
        self._author = author
        self.description = description
        self.icon = icon
        self.enabled = enabled
        self.category = category
        self.website = website
        self.permissions = tuple(permissions)
        self.capabilities = frozenset(capabilities)
        self.activation_state = activation_state
        self.settings = None
        # Bumped on every preference change; cached scripts of older revisions are stale
        self.revision = 0
        self.log = ExtensionLogAdapter(logger, id)

    # Identity is fixed for the lifetime of the extension
    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def author(self) -> str:
        return self._author

    def has_capability(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def can_inject_scripts(self) -> bool:
        return Capability.INJECT_SCRIPTS in self.capabilities

    @property
    def can_modify_requests(self) -> bool:
        return Capability.MODIFY_REQUESTS in self.capabilities

    @property
    def can_modify_headers(self) -> bool:
        return Capability.MODIFY_HEADERS in self.capabilities

    @property
    def can_access_user_data(self) -> bool:
        return Capability.ACCESS_USER_DATA in self.capabilities

    @property
    def can_display_overlay(self) -> bool:
        return Capability.DISPLAY_OVERLAY in self.capabilities

    @property
    def can_integrate_toolbar(self) -> bool:
        return Capability.INTEGRATE_TOOLBAR in self.capabilities

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def is_active_for_domain(self, domain: str) -> bool:
        """
        Check whether the extension runs on a domain.

        Args:
            domain: Host name of the page or request

        Returns:
            bool: False whenever the extension is disabled
        """
        if not self.enabled:
            return False

        domain = normalize_domain(domain)
        if isinstance(self.activation_state, Custom):
            return bool(self.custom_activation(domain))
        return self.activation_state.permits(domain)

    def custom_activation(self, domain: str) -> bool:
        """Predicate used by the Custom activation rule."""
        return True

    # ------------------------------------------------------------------
    # UI integration
    # ------------------------------------------------------------------

    @property
    def toolbar_item(self) -> Optional[ToolbarItem]:
        return None

    @property
    def context_menu_items(self) -> List[ContextMenuItem]:
        return []

    def toolbar_item_for(self, page: Any) -> Optional[ToolbarItem]:
        """Toolbar item to show for a page. Defaults to ``toolbar_item``."""
        return self.toolbar_item

    def on_toolbar_item_tapped(self, page: Any) -> None:
        pass

    def on_context_menu_item_selected(self, item_id: str, page: Any) -> None:
        pass

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, settings: Any = None) -> None:
        """
        Called once when the extension is installed.

        Args:
            settings: Settings store the extension reads its preferences from
        """
        self.settings = settings
        if settings is None:
            return

        prefs = settings.get_preferences(self.id)
        if prefs:
            try:
                self.apply_preferences(prefs)
            except Exception as e:
                self.log.error(f"Ignoring malformed preferences: {e}")

    def cleanup(self) -> None:
        """Called when the extension is uninstalled."""
        pass

    def preferences(self) -> Dict[str, Any]:
        """Serializable preference blob. Subclasses extend it."""
        return {"enabled": self.enabled}

    def apply_preferences(self, prefs: Dict[str, Any]) -> None:
        """Restore state from a preference blob."""
        if isinstance(prefs.get("enabled"), bool):
            self.enabled = prefs["enabled"]

    def save_preferences(self) -> None:
        """Write the preference blob to the settings store, if any."""
        self.revision += 1
        if self.settings is None:
            return
        try:
            self.settings.set_preferences(self.id, self.preferences())
        except Exception as e:
            self.log.error(f"Error saving preferences: {e}")

    # ------------------------------------------------------------------
    # Content hooks
    # ------------------------------------------------------------------

    def get_scripts_to_inject(self, url: str) -> Optional[List[ExtensionScript]]:
        return None

    def should_block_request(self, request: Any) -> bool:
        return False

    def modify_request(self, request: Any) -> Any:
        return request

    def modify_response(self, request: Any, body: bytes) -> bytes:
        return body

    def handle_event(self, event: ExtensionEvent) -> None:
        pass

    def on_navigation_failed(self, url: Optional[str], error: Exception) -> None:
        pass

    def describe(self) -> Dict[str, Any]:
        """Summary used for listings and logs."""
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "author": self.author,
            "description": self.description,
            "enabled": self.enabled,
            "category": self.category.value,
            "permissions": [p.value for p in self.permissions],
            "capabilities": sorted(c.value for c in self.capabilities),
            "activation": self.activation_state.describe(),
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} enabled={self.enabled}>"
