"""
Utility modules for the extension subsystem.
"""

from browser_extensions.utils.config import Settings
from browser_extensions.utils.domains import (
    domain_matches,
    host_from_url,
    matches_any,
    registrable_domain,
)
from browser_extensions.utils.logging import setup_logging, log_exception, ExtensionLogAdapter

__all__ = [
    'Settings',
    'domain_matches',
    'host_from_url',
    'matches_any',
    'registrable_domain',
    'setup_logging',
    'log_exception',
    'ExtensionLogAdapter',
]
