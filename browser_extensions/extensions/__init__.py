"""
Extension system.
"""

from browser_extensions.extensions.activation import (
    ALWAYS,
    ActivationState,
    Allowlist,
    Always,
    Blocklist,
    Custom,
)
from browser_extensions.extensions.events import EventType, ExtensionEvent
from browser_extensions.extensions.extension import (
    BaseExtension,
    Capability,
    ContextMenuItem,
    ExtensionCategory,
    ExtensionIcon,
    ExtensionPermission,
    ExtensionScript,
    InjectionTime,
    ToolbarItem,
)
from browser_extensions.extensions.manager import ExtensionManager, UIItem

__all__ = [
    'ALWAYS',
    'ActivationState',
    'Allowlist',
    'Always',
    'BaseExtension',
    'Blocklist',
    'Capability',
    'ContextMenuItem',
    'Custom',
    'EventType',
    'ExtensionCategory',
    'ExtensionEvent',
    'ExtensionIcon',
    'ExtensionManager',
    'ExtensionPermission',
    'ExtensionScript',
    'InjectionTime',
    'ToolbarItem',
    'UIItem',
]
