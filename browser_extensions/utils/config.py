"""
Settings store for the extension subsystem.
"""

import copy
import logging
import os
import json
from typing import Dict, Any, Optional
import threading

logger = logging.getLogger(__name__)

# Keys used by the extension manager
INSTALLED_KEY = "extensions.installed"
DEFAULT_INSTALLED_KEY = "extensions.default_installed"
PREFERENCES_KEY = "extensions.preferences"


def get_default_config_dir() -> str:
    """
    Get the default configuration directory.

    Returns:
        str: ~/.browser_extensions
    """
    return os.path.join(os.path.expanduser("~"), ".browser_extensions")


class Settings:
    """
    String-keyed settings store backed by a JSON file.

    Keys can be nested using dots, e.g. ``extensions.installed``. In
    ephemeral mode (private browsing) nothing is read from or written to disk.
    """

    def __init__(self, config_path: Optional[str] = None, ephemeral: bool = False,
                 read_only: bool = False):
        """
        Initialize the settings store.

        Args:
            config_path: Path to the settings file
            ephemeral: Keep settings in memory only
            read_only: Load settings from file but never write them back
        """
        if not config_path:
            config_path = os.path.join(get_default_config_dir(), "settings.json")

        self.config_path = config_path
        self.ephemeral = ephemeral
        self.read_only = read_only
        self.config: Dict[str, Any] = {}
        self._lock = threading.Lock()

        if self.ephemeral:
            self._set_defaults()
        else:
            self.load()

        logger.debug(f"Settings initialized (config_path: {config_path}, ephemeral: {ephemeral})")

    def load(self) -> None:
        """Load settings from file."""
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("settings file does not contain an object")
                with self._lock:
                    self.config = data
                logger.debug(f"Settings loaded from {self.config_path}")
            else:
                logger.debug(f"Settings file not found at {self.config_path}, using defaults")
                self._set_defaults()
        except Exception as e:
            logger.error(f"Error loading settings: {e}")
            self._set_defaults()

    def save(self) -> bool:
        """
        Save settings to file.

        Returns:
            bool: True if the settings were written
        """
        if self.ephemeral or self.read_only:
            return False

        try:
            with self._lock:
                config_copy = copy.deepcopy(self.config)

            config_dir = os.path.dirname(self.config_path)
            if config_dir:
                os.makedirs(config_dir, exist_ok=True)

            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(config_copy, f, indent=4)

            logger.debug(f"Settings saved to {self.config_path}")
            return True
        except Exception as e:
            logger.error(f"Error saving settings: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a settings value.

        Args:
            key: Settings key (can be nested using dots)
            default: Default value if key doesn't exist

        Returns:
            Any: A copy of the stored value, or default
        """
        with self._lock:
            node = self.config
            parts = key.split('.')

            for part in parts[:-1]:
                if part not in node or not isinstance(node[part], dict):
                    return default
                node = node[part]

            if parts[-1] not in node:
                return default
            return copy.deepcopy(node[parts[-1]])

    def set(self, key: str, value: Any) -> None:
        """
        Set a settings value.

        Args:
            key: Settings key (can be nested using dots)
            value: JSON-serializable value
        """
        with self._lock:
            node = self.config
            parts = key.split('.')

            for part in parts[:-1]:
                if not isinstance(node.get(part), dict):
                    node[part] = {}
                node = node[part]

            node[parts[-1]] = copy.deepcopy(value)

    def remove(self, key: str) -> bool:
        """
        Remove a settings value.

        Args:
            key: Settings key

        Returns:
            bool: True if key was removed
        """
        with self._lock:
            node = self.config
            parts = key.split('.')

            for part in parts[:-1]:
                if part not in node or not isinstance(node[part], dict):
                    return False
                node = node[part]

            if parts[-1] in node:
                del node[parts[-1]]
                return True
            return False

    def get_all(self) -> Dict[str, Any]:
        """
        Get all settings values.

        Returns:
            Dict[str, Any]: Deep copy of the settings tree
        """
        with self._lock:
            return copy.deepcopy(self.config)

    def get_installed_ids(self) -> list:
        """Get the persisted, ordered list of installed extension ids."""
        ids = self.get(INSTALLED_KEY, [])
        if not isinstance(ids, list):
            logger.warning(f"Ignoring malformed {INSTALLED_KEY} value: {ids!r}")
            return []
        return [i for i in ids if isinstance(i, str)]

    def has_installed_ids(self) -> bool:
        """Whether an installed-id list has ever been persisted."""
        return self.get(INSTALLED_KEY) is not None

    def set_installed_ids(self, ids: list) -> None:
        """Persist the ordered list of installed extension ids."""
        self.set(INSTALLED_KEY, list(ids))
        self.save()

    def get_preferences(self, extension_id: str) -> Dict[str, Any]:
        """Get an extension's preference blob (empty when missing or malformed)."""
        prefs = self.get(f"{PREFERENCES_KEY}.{extension_id}", {})
        if not isinstance(prefs, dict):
            logger.warning(f"Ignoring malformed preferences for {extension_id}")
            return {}
        return prefs

    def set_preferences(self, extension_id: str, prefs: Dict[str, Any]) -> None:
        """Store an extension's preference blob."""
        self.set(f"{PREFERENCES_KEY}.{extension_id}", prefs)
        self.save()

    def _set_defaults(self) -> None:
        """Set default settings values."""
        with self._lock:
            self.config = {
                "extensions": {
                    "default_installed": ["content-blocker"],
                    "directory": os.path.join(get_default_config_dir(), "extensions"),
                    "preferences": {},
                    "security": {
                        "js_filter": True
                    }
                }
            }

            logger.debug("Default settings set")
