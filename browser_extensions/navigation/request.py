"""
Request value passed through the extension request pipeline.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from requests.structures import CaseInsensitiveDict

from browser_extensions.utils.domains import host_from_url, registrable_domain


@dataclass(frozen=True)
class ExtensionRequest:
    """
    An outgoing request as seen by extensions.

    Requests are immutable; modifications return a new request so that each
    extension in the pipeline sees the previous one's output.
    """

    url: str
    method: str = "GET"
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    page_url: Optional[str] = None

    def __post_init__(self):
        # Always own a private copy of the headers
        object.__setattr__(self, "headers", CaseInsensitiveDict(self.headers or {}))

    @property
    def host(self) -> str:
        """Host of the requested URL."""
        return host_from_url(self.url)

    @property
    def registrable_domain(self) -> str:
        """Registrable domain of the requested URL."""
        return registrable_domain(self.host)

    @property
    def page_host(self) -> str:
        """Host of the page issuing the request (the request host for navigations)."""
        return host_from_url(self.page_url) if self.page_url else self.host

    @property
    def user_agent(self) -> Optional[str]:
        return self.headers.get("User-Agent")

    def with_header(self, name: str, value: str) -> "ExtensionRequest":
        """
        Return a copy of the request with a header set.

        Args:
            name: Header name (case-insensitive)
            value: Header value

        Returns:
            ExtensionRequest: New request
        """
        headers = CaseInsensitiveDict(self.headers)
        headers[name] = value
        return ExtensionRequest(self.url, self.method, headers, self.page_url)

    def with_headers(self, headers: Mapping[str, str]) -> "ExtensionRequest":
        """Return a copy of the request with several headers set."""
        merged = CaseInsensitiveDict(self.headers)
        merged.update(headers)
        return ExtensionRequest(self.url, self.method, merged, self.page_url)

    def header_items(self) -> Dict[str, str]:
        """Headers as a plain dict, keeping their original spelling."""
        return dict(self.headers.items())

    def __eq__(self, other):
        if not isinstance(other, ExtensionRequest):
            return NotImplemented
        return (self.url == other.url and self.method == other.method
                and self.page_url == other.page_url
                and dict(self.headers.lower_items()) == dict(other.headers.lower_items()))

    def __hash__(self):
        return hash((self.url, self.method, self.page_url,
                     tuple(sorted(self.headers.lower_items()))))
