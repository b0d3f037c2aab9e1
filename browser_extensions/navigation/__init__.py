"""
Navigation layer: the rendering surface interface, requests and tabs.
"""

from browser_extensions.navigation.request import ExtensionRequest
from browser_extensions.navigation.surface import (
    DocumentPhase,
    NavigationDelegate,
    RenderingSurface,
    StoragePartition,
)
from browser_extensions.navigation.tab import BrowserTab, normalize_url

__all__ = [
    'BrowserTab',
    'DocumentPhase',
    'ExtensionRequest',
    'NavigationDelegate',
    'RenderingSurface',
    'StoragePartition',
    'normalize_url',
]
