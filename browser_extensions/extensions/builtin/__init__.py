"""
Built-in extensions shipped with the browser.
"""

from collections import OrderedDict
from typing import Callable, Dict, List

from browser_extensions.extensions.extension import (
    BaseExtension,
    Capability,
    ExtensionCategory,
    ExtensionIcon,
    ExtensionPermission,
)
from browser_extensions.extensions.builtin.content_blocker import ContentBlockerExtension
from browser_extensions.extensions.builtin.dark_mode import DarkModeExtension, DarkModePalette
from browser_extensions.extensions.builtin.user_agent import UserAgentSpoofingExtension

PASSWORD_MANAGER_ID = "password-manager"


def create_password_manager_extension() -> BaseExtension:
    """
    Placeholder entry for the password manager.

    It has no behavior of its own and is only installed when its id has been
    persisted by an earlier session.
    """
    return BaseExtension(
        id=PASSWORD_MANAGER_ID,
        name="Password Manager",
        version="1.0",
        description="Securely store and autofill passwords",
        author="Browser Extensions",
        icon=ExtensionIcon.system("key.fill"),
        category=ExtensionCategory.SECURITY,
        permissions=[ExtensionPermission.READ_CURRENT_PAGE, ExtensionPermission.MODIFY_WEB_CONTENT],
        capabilities=[Capability.INJECT_SCRIPTS, Capability.ACCESS_USER_DATA]
    )


# Catalog order is the order extensions are offered in
BUILTIN_FACTORIES: Dict[str, Callable[[], BaseExtension]] = OrderedDict([
    (ContentBlockerExtension.ID, ContentBlockerExtension),
    (DarkModeExtension.ID, DarkModeExtension),
    (UserAgentSpoofingExtension.ID, UserAgentSpoofingExtension),
    (PASSWORD_MANAGER_ID, create_password_manager_extension),
])


def create_builtin_extensions() -> List[BaseExtension]:
    """Create a fresh instance of every built-in extension."""
    return [factory() for factory in BUILTIN_FACTORIES.values()]


__all__ = [
    'BUILTIN_FACTORIES',
    'PASSWORD_MANAGER_ID',
    'ContentBlockerExtension',
    'DarkModeExtension',
    'DarkModePalette',
    'UserAgentSpoofingExtension',
    'create_builtin_extensions',
    'create_password_manager_extension',
]
