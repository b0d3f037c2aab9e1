"""
Content blocker extension.
Blocks requests to ad and tracker hosts and hides ad-like elements on pages.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from browser_extensions.extensions.activation import Blocklist
from browser_extensions.extensions.events import EventType, ExtensionEvent
from browser_extensions.extensions.extension import (
    BaseExtension,
    Capability,
    ExtensionCategory,
    ExtensionIcon,
    ExtensionPermission,
    ExtensionScript,
    InjectionTime,
    ToolbarItem,
)
from browser_extensions.privacy.filter_rules import FilterRules
from browser_extensions.utils.domains import (
    domain_matches,
    host_from_url,
    matches_any,
    normalize_domain,
    path_from_url,
    registrable_domain,
)

logger = logging.getLogger(__name__)

# Ad networks and trackers. Entries with a path only match that path prefix.
BLOCKED_HOSTS = (
    # Ad networks
    "doubleclick.net",
    "googleadservices.com",
    "googlesyndication.com",
    "adservice.google.com",
    "adnxs.com",
    "moatads.com",
    "rubiconproject.com",
    "criteo.com",
    "taboola.com",
    "outbrain.com",
    "adform.net",
    "pubmatic.com",
    "openx.net",
    "smartadserver.com",

    # Analytics and tracking
    "google-analytics.com",
    "googletagmanager.com",
    "googletagservices.com",
    "analytics.yahoo.com",
    "scorecardresearch.com",
    "quantserve.com",
    "hotjar.com",
    "amazon-adsystem.com",
    "facebook.com/tr",
    "facebook.net/tr",
    "pixel.facebook.com",
    "pixel.twitter.com",
    "ads.linkedin.com",
)

# Structural heuristics for ad elements
AD_SELECTORS = (
    "[id*='ad-']",
    "[id*='ad_']",
    "[id*='_ad_']",
    "[id*='_ads_']",
    "[id*='googlead']",
    "[id*='adsense']",
    "[id*='advert']",
    "[id*='banner']",
    "[id*='sponsor']",
    "[class*='ad-']",
    "[class*='ad_']",
    "[class*='_ad_']",
    "[class*='_ads_']",
    "[class*='adblock']",
    "[class*='adbanner']",
    "[class*='googlead']",
    "[class*='adsense']",
    "[class*='advert']",
    "[class*='sponsored']",
    "div[class*='banner']",
    "div[id*='banner']",
    "aside[class*='ad']",
    "aside[id*='ad']",
    "iframe[src*='doubleclick']",
    "iframe[src*='googlead']",
    "iframe[src*='ad-']",
    "iframe[src*='adserv']",
    "img[src*='ad.']",
    "a[href*='adclick']",
)

# Substrings of iframe sources hidden when frames are added dynamically
AD_FRAME_HINTS = ("doubleclick", "googlesynd", "adserv", "banner", "sponsor")

_HIDE_SCRIPT = """
    var selectors = %(selectors)s;
    var frameHints = %(frame_hints)s;
    var marker = 'data-browser-extensions-hidden';
    var hiddenCount = 0;

    function hide(el, selector) {
        // Already handled elements are left alone
        if (el.hasAttribute(marker)) {
            return;
        }
        el.setAttribute(marker, '1');
        el.style.setProperty('display', 'none', 'important');
        hiddenCount++;
        extension.sendMessage({
            type: 'content_blocked',
            url: window.location.href,
            selector: selector
        });
    }

    function hideAds() {
        selectors.forEach(function(selector) {
            try {
                document.querySelectorAll(selector).forEach(function(el) {
                    hide(el, selector);
                });
            } catch (e) {
                // Invalid selectors on exotic engines
            }
        });
    }

    function checkFrames(mutations) {
        mutations.forEach(function(mutation) {
            mutation.addedNodes.forEach(function(node) {
                if (node.tagName === 'IFRAME') {
                    var src = (node.src || '').toLowerCase();
                    for (var i = 0; i < frameHints.length; i++) {
                        if (src.indexOf(frameHints[i]) !== -1) {
                            hide(node, 'iframe');
                            break;
                        }
                    }
                }
            });
        });
    }

    var observer = new MutationObserver(function(mutations) {
        hideAds();
        checkFrames(mutations);
    });

    function observe() {
        hideAds();
        observer.observe(document.documentElement || document.body, {childList: true, subtree: true});
    }

    if (document.documentElement) {
        observe();
    } else {
        document.addEventListener('DOMContentLoaded', observe);
    }
    window.addEventListener('load', hideAds);
    window.addEventListener('pagehide', function() { observer.disconnect(); });

    var reported = 0;
    extension.setInterval(function() {
        if (hiddenCount !== reported) {
            reported = hiddenCount;
            extension.storage.set('blockedCount', hiddenCount);
        }
    }, 2000);
"""


def host_matches_entry(host: str, path: str, entry: str) -> bool:
    """
    Check a request host and path against a block list entry.

    Args:
        host: Request host
        path: Request path
        entry: ``domain`` or ``domain/path-prefix``

    Returns:
        bool: True if the entry covers the request
    """
    entry_host, sep, entry_path = entry.partition('/')
    if not domain_matches(host, entry_host):
        return False
    if not sep:
        return True
    return path.lstrip('/').startswith(entry_path)


class ContentBlockerExtension(BaseExtension):
    """Blocks ads and trackers."""

    ID = "content-blocker"

    def __init__(self):
        super().__init__(
            id=self.ID,
            name="Ad Blocker",
            version="1.0",
            description="Blocks advertisements and trackers for faster, cleaner browsing",
            author="Browser Extensions",
            icon=ExtensionIcon.system("shield.fill"),
            enabled=True,
            category=ExtensionCategory.CONTENT_BLOCKER,
            permissions=[ExtensionPermission.BLOCK_CONTENT, ExtensionPermission.MODIFY_WEB_CONTENT],
            capabilities=[Capability.INJECT_SCRIPTS, Capability.MODIFY_REQUESTS,
                          Capability.INTEGRATE_TOOLBAR],
            activation_state=Blocklist([])
        )

        self.blocked_hosts = BLOCKED_HOSTS
        self.allowed_domains: List[str] = []
        self.filter_rules = FilterRules()
        self.blocked_count = 0

    # ------------------------------------------------------------------
    # Allow list and custom rules
    # ------------------------------------------------------------------

    def is_allowed(self, domain: str) -> bool:
        """Whether blocking is switched off for a domain."""
        return matches_any(domain, self.allowed_domains)

    def add_allowed_domain(self, domain: str) -> bool:
        """
        Exempt a domain from blocking.

        Args:
            domain: Domain to allow

        Returns:
            bool: True if the domain was added
        """
        domain = normalize_domain(domain)
        if not domain or domain in self.allowed_domains:
            return False

        self.allowed_domains.append(domain)
        self.save_preferences()
        self.log.info(f"Allowed domain {domain}")
        return True

    def remove_allowed_domain(self, domain: str) -> bool:
        """Remove a domain (and entries covering it) from the allow list."""
        domain = normalize_domain(domain)
        remaining = [d for d in self.allowed_domains if not domain_matches(domain, d)]
        if len(remaining) == len(self.allowed_domains):
            return False

        self.allowed_domains = remaining
        self.save_preferences()
        self.log.info(f"Removed allowed domain {domain}")
        return True

    def add_custom_rule(self, rule: str) -> bool:
        """Add a custom filter rule in Adblock Plus syntax."""
        added = self.filter_rules.add_rule(rule)
        if added:
            self.save_preferences()
        return added

    def remove_custom_rule(self, rule: str) -> bool:
        removed = self.filter_rules.remove_rule(rule)
        if removed:
            self.save_preferences()
        return removed

    @property
    def custom_rules(self) -> List[str]:
        return list(self.filter_rules.raw_rules)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def preferences(self) -> Dict[str, Any]:
        prefs = super().preferences()
        prefs["allowed_domains"] = list(self.allowed_domains)
        prefs["custom_rules"] = self.custom_rules
        return prefs

    def apply_preferences(self, prefs: Dict[str, Any]) -> None:
        super().apply_preferences(prefs)

        allowed = prefs.get("allowed_domains", [])
        if isinstance(allowed, list):
            self.allowed_domains = [normalize_domain(d) for d in allowed if isinstance(d, str) and d.strip()]

        rules = prefs.get("custom_rules", [])
        if isinstance(rules, list):
            self.filter_rules.set_rules(r for r in rules if isinstance(r, str))

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def should_block_request(self, request) -> bool:
        if not self.enabled:
            return False

        host = request.host
        if not host:
            return False

        # Allowed sites keep all their requests
        if self.is_allowed(request.registrable_domain) or self.is_allowed(request.page_host):
            return False

        path = path_from_url(request.url)
        should_block = any(host_matches_entry(host, path, entry) for entry in self.blocked_hosts)

        if not should_block:
            should_block = self.filter_rules.should_block(request.url, request.page_url)

        if should_block:
            self.blocked_count += 1
            self.log.debug(f"Blocked request to {host}")

        return should_block

    def get_scripts_to_inject(self, url: str) -> Optional[List[ExtensionScript]]:
        if not self.enabled:
            return None

        host = host_from_url(url)
        if self.is_allowed(registrable_domain(host)) or self.is_allowed(host):
            return None

        source = _HIDE_SCRIPT % {
            "selectors": json.dumps(list(AD_SELECTORS)),
            "frame_hints": json.dumps(list(AD_FRAME_HINTS)),
        }
        return [ExtensionScript(source, InjectionTime.BEFORE_DOCUMENT)]

    def handle_event(self, event: ExtensionEvent) -> None:
        # Request blocks are already counted in should_block_request
        if event.type == EventType.CONTENT_BLOCKED and event.request is None:
            self.blocked_count += 1

    # ------------------------------------------------------------------
    # UI
    # ------------------------------------------------------------------

    @property
    def toolbar_item(self) -> Optional[ToolbarItem]:
        return ToolbarItem(
            id="toggle-adblock",
            title="Toggle Ad Blocker",
            icon=ExtensionIcon.system("shield.fill"),
            badge="ON"
        )

    def toolbar_item_for(self, page: Any) -> Optional[ToolbarItem]:
        host = host_from_url(getattr(page, "url", None))
        if host and self.is_allowed(host):
            return ToolbarItem(
                id="toggle-adblock",
                title="Toggle Ad Blocker",
                icon=ExtensionIcon.system("shield.slash"),
                badge="OFF"
            )
        return self.toolbar_item

    def on_toolbar_item_tapped(self, page: Any) -> None:
        host = host_from_url(getattr(page, "url", None))
        if not host:
            return

        domain = registrable_domain(host)
        if self.is_allowed(domain):
            self.remove_allowed_domain(domain)
        else:
            self.add_allowed_domain(domain)

        page.reload()

