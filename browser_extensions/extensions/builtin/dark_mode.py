"""
Dark mode extension.
Applies a configurable dark appearance to sites that don't have one.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import cssutils

from browser_extensions.extensions.activation import Blocklist
from browser_extensions.extensions.bridge import js_literal, push_command
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
from browser_extensions.utils.domains import host_from_url, matches_any, normalize_domain

# Keep cssutils quiet about the vendor-specific values pages may contain
cssutils.log.setLevel(logging.CRITICAL)

logger = logging.getLogger(__name__)

# Sites that already ship a good dark theme
SITES_WITH_NATIVE_DARK_MODE = (
    "youtube.com",
    "netflix.com",
    "disneyplus.com",
    "hulu.com",
    "twitter.com",
    "reddit.com",
    "github.com",
)

MIN_CONTRAST = 0.5
MAX_CONTRAST = 2.0

TOGGLE_COMMAND = "toggle_dark_mode"
STYLE_ELEMENT_ID = "browser-extensions-dark-mode"


class DarkModePalette(Enum):
    DARK = "dark"
    BLUE = "blue"
    SEPIA = "sepia"
    GREEN = "green"
    GREY = "grey"


# Palette -> background, text, link, border
PALETTE_COLORS = {
    DarkModePalette.DARK: {"background": "#1a1a1a", "text": "#e8e8e8", "link": "#6da8ff", "border": "#444"},
    DarkModePalette.BLUE: {"background": "#172a3a", "text": "#e8e8e8", "link": "#6da8ff", "border": "#2c5a7c"},
    DarkModePalette.SEPIA: {"background": "#251e12", "text": "#e8d8b7", "link": "#be8f65", "border": "#4e3e29"},
    DarkModePalette.GREEN: {"background": "#1a2a1e", "text": "#d8e8df", "link": "#8fc786", "border": "#345239"},
    DarkModePalette.GREY: {"background": "#2a2a2a", "text": "#d0d0d0", "link": "#a0a0a0", "border": "#5a5a5a"},
}

STRUCTURAL_SELECTOR = ("div, p, span, h1, h2, h3, h4, h5, h6, article, section, "
                       "header, footer, nav, main, aside")
MEDIA_SELECTOR = "img, video, picture, canvas, svg"

# Page-side driver. The stylesheet itself is built host-side.
_DARK_MODE_SCRIPT = """
    if (window.__browserExtensionsDarkMode) {
        return;
    }
    window.__browserExtensionsDarkMode = true;

    var css = %(css)s;
    var styleId = %(style_id)s;

    function brightness(color) {
        var rgb = (color || '').match(/\\d+/g);
        if (!rgb || rgb.length < 3) {
            return 255;
        }
        // A fully transparent background says nothing about the page
        if (rgb.length >= 4 && parseFloat(rgb[3]) === 0) {
            return 255;
        }
        return (parseInt(rgb[0], 10) + parseInt(rgb[1], 10) + parseInt(rgb[2], 10)) / 3;
    }

    // Rendered colors and the user preference only, never theme attributes
    function rendersDark() {
        var root = document.documentElement;
        var body = document.body;
        var htmlBg = root ? window.getComputedStyle(root).backgroundColor : '';
        var bodyBg = body ? window.getComputedStyle(body).backgroundColor : '';
        var prefersDark = window.matchMedia && window.matchMedia('(prefers-color-scheme: dark)').matches;
        return brightness(bodyBg) < 128 || brightness(htmlBg) < 128 || prefersDark;
    }

    function isAlreadyDark() {
        var root = document.documentElement;
        return rendersDark() || (root && root.getAttribute('data-theme') === 'dark');
    }

    function tryNativeDarkMode() {
        var toggles = [
            '#dark-mode-toggle',
            '.dark-mode-toggle',
            '#darkModeToggle',
            '.darkModeToggle',
            '[data-testid="dark-mode-toggle"]',
            '[aria-label="Toggle dark mode"]',
            '[aria-label="Dark mode"]',
            '#night-mode',
            '.night-mode-toggle',
            '.color-scheme-toggle'
        ];
        for (var i = 0; i < toggles.length; i++) {
            var toggle = document.querySelector(toggles[i]);
            if (toggle) {
                toggle.click();
                return true;
            }
        }

        var root = document.documentElement;
        var addedClasses = ['dark-mode', 'dark', 'theme-dark', 'darkmode'].filter(function(cls) {
            return !root.classList.contains(cls);
        });
        var attributes = ['data-theme', 'data-color-scheme', 'data-bs-theme'];
        var previous = attributes.map(function(name) {
            return root.getAttribute(name);
        });

        addedClasses.forEach(function(cls) {
            root.classList.add(cls);
        });
        attributes.forEach(function(name) {
            root.setAttribute(name, 'dark');
        });
        try {
            localStorage.setItem('theme', 'dark');
            localStorage.setItem('darkMode', 'true');
            localStorage.setItem('isDarkMode', 'true');
            localStorage.setItem('color-scheme', 'dark');
        } catch (e) {}

        // Only the rendered result counts; the attributes above are ours
        if (rendersDark()) {
            return true;
        }

        addedClasses.forEach(function(cls) {
            root.classList.remove(cls);
        });
        attributes.forEach(function(name, i) {
            if (previous[i] === null) {
                root.removeAttribute(name);
            } else {
                root.setAttribute(name, previous[i]);
            }
        });
        return false;
    }

    function applyDarkMode() {
        var style = document.getElementById(styleId);
        if (style) {
            style.disabled = false;
        } else {
            style = document.createElement('style');
            style.id = styleId;
            style.textContent = css;
            (document.head || document.documentElement).appendChild(style);
        }
        extension.storage.set('darkModeEnabled', true);
    }

    function start() {
        if (isAlreadyDark()) {
            extension.storage.set('nativeDarkMode', true);
            return;
        }
        if (!tryNativeDarkMode()) {
            applyDarkMode();
        }
    }

    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', start);
    } else {
        start();
    }

    extension.onCommand(function(command) {
        if (command && command.type === %(toggle_command)s) {
            var style = document.getElementById(styleId);
            if (style) {
                style.disabled = !style.disabled;
                extension.storage.set('darkModeEnabled', !style.disabled);
            } else {
                applyDarkMode();
            }
        }
    });
"""


def build_stylesheet(palette: DarkModePalette, contrast: float = 1.0, preserve_images: bool = True) -> str:
    """
    Build the dark mode style sheet.

    Args:
        palette: Color palette
        contrast: Contrast level
        preserve_images: Keep media colors (dimmed) instead of inverting them

    Returns:
        str: Serialized CSS
    """
    colors = PALETTE_COLORS[palette]
    sheet = cssutils.css.CSSStyleSheet()

    def add_rule(selector: str, declarations: Dict[str, str]) -> None:
        style = cssutils.css.CSSStyleDeclaration()
        for name, value in declarations.items():
            priority = ""
            if value.endswith(" !important"):
                value, priority = value[:-len(" !important")], "important"
            style.setProperty(name, value, priority)
        sheet.add(cssutils.css.CSSStyleRule(selectorText=selector, style=style))

    text_and_background = {
        "background-color": f"{colors['background']} !important",
        "color": f"{colors['text']} !important",
    }
    bordered = dict(text_and_background, **{"border-color": f"{colors['border']} !important"})

    add_rule("html, body", text_and_background)
    add_rule(STRUCTURAL_SELECTOR, bordered)
    add_rule("a, a:link, a:visited", {"color": f"{colors['link']} !important"})
    add_rule("a:hover, a:active", {"color": f"{colors['link']} !important", "filter": "brightness(1.2)"})
    add_rule("input, textarea, select", dict(bordered, filter="brightness(1.2)"))
    add_rule("button, .button, [class*='btn']", dict(bordered, filter="brightness(1.3)"))
    add_rule("table, tr, td, th", bordered)
    add_rule("th", {"filter": "brightness(1.2)"})

    if preserve_images:
        add_rule(MEDIA_SELECTOR, {
            "filter": f"brightness({0.8 * contrast:.2f}) contrast({1.2 * contrast:.2f})"
        })
    else:
        add_rule(MEDIA_SELECTOR, {"filter": "invert(1) hue-rotate(180deg)"})

    add_rule("*::before, *::after", {
        "background-color": "inherit !important",
        "color": "inherit !important",
    })
    add_rule("[data-theme=\"dark\"]", {"filter": "none !important"})
    add_rule("[style*=\"background: transparent\"], [style*=\"background-color: transparent\"], "
             "[style*=\"background:transparent\"], [style*=\"background-color:transparent\"]",
             {"background-color": "transparent !important"})

    if contrast != 1.0:
        add_rule("html", {"filter": f"contrast({contrast:.2f}) !important"})

    return sheet.cssText.decode("utf-8")


class DarkModeExtension(BaseExtension):
    """Applies customizable dark mode to websites."""

    ID = "dark-mode"

    def __init__(self):
        super().__init__(
            id=self.ID,
            name="Dark Mode",
            version="1.0",
            description="Applies customizable dark mode to websites",
            author="Browser Extensions",
            icon=ExtensionIcon.system("moon.fill"),
            enabled=False,
            category=ExtensionCategory.APPEARANCE,
            permissions=[ExtensionPermission.MODIFY_WEB_CONTENT],
            capabilities=[Capability.INJECT_SCRIPTS, Capability.INTEGRATE_TOOLBAR],
            activation_state=Blocklist(SITES_WITH_NATIVE_DARK_MODE)
        )

        self.excluded_domains: List[str] = []
        self.palette = DarkModePalette.DARK
        self.contrast = 1.0
        self.preserve_images = True

    def _update_activation(self) -> None:
        self.activation_state = Blocklist(SITES_WITH_NATIVE_DARK_MODE + tuple(self.excluded_domains))

    def is_excluded(self, domain: str) -> bool:
        return matches_any(domain, SITES_WITH_NATIVE_DARK_MODE) or matches_any(domain, self.excluded_domains)

    def add_excluded_domain(self, domain: str) -> bool:
        domain = normalize_domain(domain)
        if not domain or domain in self.excluded_domains:
            return False
        self.excluded_domains.append(domain)
        self._update_activation()
        self.save_preferences()
        return True

    def remove_excluded_domain(self, domain: str) -> bool:
        domain = normalize_domain(domain)
        if domain not in self.excluded_domains:
            return False
        self.excluded_domains.remove(domain)
        self._update_activation()
        self.save_preferences()
        return True

    def set_palette(self, palette) -> None:
        """
        Select the color palette.

        Args:
            palette: DarkModePalette or its name
        """
        self.palette = DarkModePalette(palette)
        self.save_preferences()

    def set_contrast(self, level: float) -> None:
        """Set the contrast level, clamped to the supported range."""
        self.contrast = max(MIN_CONTRAST, min(MAX_CONTRAST, float(level)))
        self.save_preferences()

    def set_preserve_images(self, preserve: bool) -> None:
        self.preserve_images = bool(preserve)
        self.save_preferences()

    def stylesheet(self) -> str:
        return build_stylesheet(self.palette, self.contrast, self.preserve_images)

    def preferences(self) -> Dict[str, Any]:
        prefs = super().preferences()
        prefs.update({
            "excluded_domains": list(self.excluded_domains),
            "palette": self.palette.value,
            "contrast": self.contrast,
            "preserve_images": self.preserve_images,
        })
        return prefs

    def apply_preferences(self, prefs: Dict[str, Any]) -> None:
        super().apply_preferences(prefs)

        excluded = prefs.get("excluded_domains", [])
        if isinstance(excluded, list):
            self.excluded_domains = [normalize_domain(d) for d in excluded if isinstance(d, str) and d.strip()]
            self._update_activation()

        if "palette" in prefs:
            try:
                self.palette = DarkModePalette(prefs["palette"])
            except ValueError:
                logger.warning(f"Unknown dark mode palette {prefs['palette']!r}, keeping {self.palette.value}")

        if isinstance(prefs.get("contrast"), (int, float)):
            self.contrast = max(MIN_CONTRAST, min(MAX_CONTRAST, float(prefs["contrast"])))

        if isinstance(prefs.get("preserve_images"), bool):
            self.preserve_images = prefs["preserve_images"]

    def get_scripts_to_inject(self, url: str) -> Optional[List[ExtensionScript]]:
        if not self.enabled:
            return None

        host = host_from_url(url)
        if not host or self.is_excluded(host):
            return None

        source = _DARK_MODE_SCRIPT % {
            "css": js_literal(self.stylesheet()),
            "style_id": js_literal(STYLE_ELEMENT_ID),
            "toggle_command": js_literal(TOGGLE_COMMAND),
        }
        return [ExtensionScript(source, InjectionTime.BEFORE_DOCUMENT)]

    @property
    def toolbar_item(self) -> Optional[ToolbarItem]:
        return ToolbarItem(
            id="toggle-dark-mode",
            title="Toggle Dark Mode",
            icon=ExtensionIcon.system("moon.fill")
        )

    def on_toolbar_item_tapped(self, page: Any) -> None:
        push_command(page, {"type": TOGGLE_COMMAND}, extension_id=self.id)
