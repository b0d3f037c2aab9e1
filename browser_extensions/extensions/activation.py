"""
Activation rules deciding on which domains an extension runs.
"""

from dataclasses import dataclass
from typing import Tuple

from browser_extensions.utils.domains import matches_any


@dataclass(frozen=True)
class ActivationState:
    """Base activation rule. Permits every domain."""

    def permits(self, domain: str) -> bool:
        return True

    def describe(self) -> str:
        return "always"


@dataclass(frozen=True)
class Always(ActivationState):
    """Active on all sites."""


@dataclass(frozen=True)
class Allowlist(ActivationState):
    """Active only on the listed domains and their subdomains."""

    domains: Tuple[str, ...] = ()

    def __init__(self, domains=()):
        object.__setattr__(self, "domains", tuple(domains))

    def permits(self, domain: str) -> bool:
        return matches_any(domain, self.domains)

    def describe(self) -> str:
        return f"allowlist({', '.join(self.domains)})"


@dataclass(frozen=True)
class Blocklist(ActivationState):
    """Active everywhere except the listed domains and their subdomains."""

    domains: Tuple[str, ...] = ()

    def __init__(self, domains=()):
        object.__setattr__(self, "domains", tuple(domains))

    def permits(self, domain: str) -> bool:
        return not matches_any(domain, self.domains)

    def describe(self) -> str:
        return f"blocklist({', '.join(self.domains)})"


@dataclass(frozen=True)
class Custom(ActivationState):
    """
    Rule evaluated by the extension itself.

    The rule object carries no data; ``BaseExtension.custom_activation`` is
    consulted instead.
    """

    def describe(self) -> str:
        return "custom"


ALWAYS = Always()
