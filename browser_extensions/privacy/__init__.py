"""
Privacy helpers used by the built-in extensions.
"""

from browser_extensions.privacy.filter_rules import FilterRules

__all__ = [
    'FilterRules',
]
