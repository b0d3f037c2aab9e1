"""
Filter rule engine.
This module compiles user-supplied Adblock Plus style rules and answers
whether a request URL should be blocked.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Set

from adblockparser import AdblockRules

from browser_extensions.utils.domains import domain_matches, host_from_url, registrable_domain

logger = logging.getLogger(__name__)

# Options we can supply for every request; rules needing others are skipped
SUPPORTED_OPTIONS = ['domain', 'third-party']

# Rules longer than this are almost always malformed
MAX_RULE_LENGTH = 10000


class FilterRules:
    """Compiled set of filter rules."""

    def __init__(self, rules: Optional[Iterable[str]] = None):
        """
        Initialize the rule set.

        Args:
            rules: Filter rules in Adblock Plus syntax
        """
        self.raw_rules: List[str] = []
        self.rules: Optional[AdblockRules] = None

        # ``||example.com^`` rules are also kept as plain domains
        self.blocked_domains: Set[str] = set()
        # Exception rules force every lookup through the compiled rules
        self.has_exceptions = False

        self.url_cache: Dict[str, bool] = {}
        self._lock = threading.Lock()

        if rules:
            self.set_rules(rules)

    def __len__(self) -> int:
        return len(self.raw_rules)

    def __contains__(self, rule: str) -> bool:
        return rule in self.raw_rules

    def set_rules(self, rules: Iterable[str]) -> None:
        """
        Replace the rule set and recompile.

        Args:
            rules: Filter rules
        """
        self.raw_rules = []
        for rule in rules:
            if isinstance(rule, str) and rule.strip() and rule.strip() not in self.raw_rules:
                self.raw_rules.append(rule.strip())
        self._compile()

    def add_rule(self, rule: str) -> bool:
        """
        Add a single rule.

        Args:
            rule: Filter rule

        Returns:
            bool: True if the rule was added
        """
        if not rule or rule.isspace():
            return False

        rule = rule.strip()
        if rule in self.raw_rules:
            return False

        self.raw_rules.append(rule)
        self._compile()
        logger.debug(f"Added filter rule: {rule}")
        return True

    def remove_rule(self, rule: str) -> bool:
        """
        Remove a single rule.

        Args:
            rule: Filter rule

        Returns:
            bool: True if the rule was removed
        """
        rule = (rule or "").strip()
        if rule not in self.raw_rules:
            return False

        self.raw_rules.remove(rule)
        self._compile()
        logger.debug(f"Removed filter rule: {rule}")
        return True

    def _compile(self) -> None:
        """Compile the raw rules."""
        sanitized = []
        domains = set()

        for rule in self.raw_rules:
            # Comments and section headers
            if rule.startswith(('!', '[')):
                continue

            if len(rule) > MAX_RULE_LENGTH:
                logger.debug(f"Skipping excessively long rule ({len(rule)} chars)")
                continue

            if rule.count('(') != rule.count(')'):
                logger.debug(f"Skipping rule with unbalanced parentheses: {rule}")
                continue

            domain = self._extract_domain(rule)
            if domain:
                domains.add(domain)

            sanitized.append(rule)

        with self._lock:
            self.blocked_domains = domains
            self.has_exceptions = any(rule.startswith("@@") for rule in sanitized)
            self.url_cache.clear()

            if not sanitized:
                self.rules = None
                return

            try:
                self.rules = AdblockRules(
                    sanitized,
                    supported_options=SUPPORTED_OPTIONS,
                    skip_unsupported_rules=True,
                    use_re2=False,
                    max_mem=256 * 1024 * 1024
                )
                logger.info(f"Compiled {len(sanitized)} filter rules")
            except Exception as e:
                logger.error(f"Error compiling filter rules: {e}")
                logger.warning(f"Falling back to {len(domains)} domain blocks")
                self.rules = None

    @staticmethod
    def _extract_domain(rule: str) -> Optional[str]:
        """
        Extract the domain of a plain domain-anchor rule.

        Args:
            rule: Filter rule

        Returns:
            Optional[str]: Domain for rules like ``||example.com^``, else None
        """
        if rule.startswith('||') and rule.endswith('^'):
            domain = rule[2:-1]
            if domain and '/' not in domain and '*' not in domain:
                return domain.lower()
        return None

    def should_block(self, url: str, page_url: Optional[str] = None) -> bool:
        """
        Check if a URL should be blocked.

        Args:
            url: Request URL
            page_url: URL of the page issuing the request

        Returns:
            bool: True if a rule blocks the URL
        """
        if not self.raw_rules:
            return False

        cache_key = f"{page_url or ''} {url}"
        with self._lock:
            if cache_key in self.url_cache:
                return self.url_cache[cache_key]

        host = host_from_url(url)
        page_host = host_from_url(page_url) if page_url else host

        should_block = False
        if self.rules is None or not self.has_exceptions:
            should_block = any(domain_matches(host, domain) for domain in self.blocked_domains)

        if not should_block and self.rules is not None:
            options = {
                'domain': page_host,
                'third-party': registrable_domain(host) != registrable_domain(page_host),
            }
            try:
                should_block = self.rules.should_block(url, options)
            except Exception as e:
                logger.error(f"Error checking URL {url}: {e}")

        with self._lock:
            self.url_cache[cache_key] = should_block

        return should_block
