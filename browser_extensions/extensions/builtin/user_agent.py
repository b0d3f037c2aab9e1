"""
User agent spoofing extension.
"""

import logging
from typing import Any, Dict, List, Optional

from browser_extensions.extensions.activation import ALWAYS
from browser_extensions.extensions.extension import (
    BaseExtension,
    Capability,
    ContextMenuItem,
    ExtensionCategory,
    ExtensionIcon,
    ExtensionPermission,
    ToolbarItem,
)
from browser_extensions.utils.domains import domain_matches, normalize_domain

logger = logging.getLogger(__name__)

USER_AGENT_PRESETS = {
    "Chrome Windows": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Chrome Mac": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Chrome Android": "Mozilla/5.0 (Linux; Android 10; SM-G973F) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.120 Mobile Safari/537.36",
    "Firefox Windows": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:89.0) Gecko/20100101 Firefox/89.0",
    "Firefox Mac": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:89.0) Gecko/20100101 Firefox/89.0",
    "Firefox Android": "Mozilla/5.0 (Android 12; Mobile; rv:68.0) Gecko/68.0 Firefox/89.0",
    "Safari Mac": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.1.1 Safari/605.1.15",
    "Safari iOS": "Mozilla/5.0 (iPhone; CPU iPhone OS 14_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.0 Mobile/15E148 Safari/604.1",
    "Edge Windows": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36 Edg/91.0.864.59",
    "Samsung Browser": "Mozilla/5.0 (Linux; Android 10; SAMSUNG SM-G973F) AppleWebKit/537.36 (KHTML, like Gecko) SamsungBrowser/14.0 Chrome/87.0.4280.141 Mobile Safari/537.36",
    "Desktop": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Mobile": "Mozilla/5.0 (iPhone; CPU iPhone OS 14_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.0 Mobile/15E148 Safari/604.1",
    "Tablet": "Mozilla/5.0 (iPad; CPU OS 14_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.0 Mobile/15E148 Safari/604.1",
    "GoogleBot": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
    "BingBot": "Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)",
}

# Context menu item id -> preset (None resets)
CONTEXT_MENU_PRESETS = {
    "user-agent-desktop": "Desktop",
    "user-agent-mobile": "Mobile",
    "user-agent-reset": None,
}

CONTEXT_MENU_ITEMS = [
    ContextMenuItem(id="user-agent-desktop", title="View as Desktop",
                    icon=ExtensionIcon.system("desktopcomputer")),
    ContextMenuItem(id="user-agent-mobile", title="View as Mobile",
                    icon=ExtensionIcon.system("iphone")),
    ContextMenuItem(id="user-agent-reset", title="Reset User Agent",
                    icon=ExtensionIcon.system("arrow.counterclockwise")),
]


class UserAgentSpoofingExtension(BaseExtension):
    """Rewrites the User-Agent header of outgoing requests."""

    ID = "user-agent-spoofer"

    def __init__(self):
        super().__init__(
            id=self.ID,
            name="User Agent Spoofer",
            version="1.0",
            description="Spoof your user agent to view websites as if using different browsers or devices",
            author="Browser Extensions",
            icon=ExtensionIcon.system("person.fill.viewfinder"),
            enabled=False,
            category=ExtensionCategory.PRIVACY,
            permissions=[ExtensionPermission.MODIFY_WEB_CONTENT, ExtensionPermission.MODIFY_HEADERS],
            capabilities=[Capability.MODIFY_REQUESTS, Capability.MODIFY_HEADERS,
                          Capability.INTEGRATE_TOOLBAR],
            activation_state=ALWAYS
        )

        self.presets = dict(USER_AGENT_PRESETS)
        self.custom_user_agent: Optional[str] = None
        self.selected_preset: Optional[str] = None
        self.site_user_agents: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_preset(self, preset: str) -> bool:
        """
        Use a named preset as the global user agent.

        Args:
            preset: Preset name, e.g. "Mobile"

        Returns:
            bool: False if the preset is unknown
        """
        if preset not in self.presets:
            self.log.warning(f"Unknown user agent preset: {preset}")
            return False

        self.custom_user_agent = self.presets[preset]
        self.selected_preset = preset
        self.save_preferences()
        return True

    def set_custom_user_agent(self, user_agent: str) -> None:
        self.custom_user_agent = user_agent or None
        self.selected_preset = None
        self.save_preferences()

    def reset(self) -> None:
        """Stop overriding the global user agent."""
        self.custom_user_agent = None
        self.selected_preset = None
        self.save_preferences()

    def add_site_user_agent(self, domain: str, user_agent: str) -> None:
        domain = normalize_domain(domain)
        if not domain or not user_agent:
            return
        self.site_user_agents[domain] = user_agent
        self.save_preferences()

    def remove_site_user_agent(self, domain: str) -> bool:
        removed = self.site_user_agents.pop(normalize_domain(domain), None) is not None
        if removed:
            self.save_preferences()
        return removed

    def user_agent_for_domain(self, domain: str) -> Optional[str]:
        """
        Effective user agent for a host.

        Per-site overrides win over the global one; among overlapping
        per-site entries the most specific (longest) one wins.

        Args:
            domain: Request host

        Returns:
            Optional[str]: User agent to send, or None to leave the request alone
        """
        matches = [site for site in self.site_user_agents if domain_matches(domain, site)]
        if matches:
            return self.site_user_agents[max(matches, key=len)]
        return self.custom_user_agent

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def preferences(self) -> Dict[str, Any]:
        prefs = super().preferences()
        prefs.update({
            "custom_user_agent": self.custom_user_agent,
            "selected_preset": self.selected_preset,
            "site_user_agents": dict(self.site_user_agents),
        })
        return prefs

    def apply_preferences(self, prefs: Dict[str, Any]) -> None:
        super().apply_preferences(prefs)

        preset = prefs.get("selected_preset")
        if isinstance(preset, str) and preset in self.presets:
            self.selected_preset = preset
            self.custom_user_agent = self.presets[preset]
        elif isinstance(prefs.get("custom_user_agent"), str):
            self.selected_preset = None
            self.custom_user_agent = prefs["custom_user_agent"] or None

        sites = prefs.get("site_user_agents", {})
        if isinstance(sites, dict):
            self.site_user_agents = {
                normalize_domain(domain): ua for domain, ua in sites.items()
                if isinstance(domain, str) and isinstance(ua, str) and ua
            }

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def modify_request(self, request):
        if not self.enabled:
            return request

        host = request.host
        if not host:
            return request

        user_agent = self.user_agent_for_domain(host)
        if user_agent is None or request.user_agent == user_agent:
            return request

        return request.with_header("User-Agent", user_agent)

    @property
    def toolbar_item(self) -> Optional[ToolbarItem]:
        return ToolbarItem(
            id="user-agent-toggle",
            title="Change User Agent",
            icon=ExtensionIcon.system("person.fill.viewfinder"),
            badge=self.selected_preset
        )

    @property
    def context_menu_items(self) -> List[ContextMenuItem]:
        return list(CONTEXT_MENU_ITEMS)

    def on_toolbar_item_tapped(self, page: Any) -> None:
        if self.custom_user_agent == self.presets["Desktop"]:
            self.set_preset("Mobile")
        else:
            self.set_preset("Desktop")

        if page is not None:
            page.reload()

    def on_context_menu_item_selected(self, item_id: str, page: Any) -> None:
        if page is None or item_id not in CONTEXT_MENU_PRESETS:
            return

        preset = CONTEXT_MENU_PRESETS[item_id]
        if preset is None:
            self.reset()
        else:
            self.set_preset(preset)

        page.reload()
