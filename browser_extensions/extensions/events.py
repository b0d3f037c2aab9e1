"""
Events delivered to extensions by the manager.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from browser_extensions.utils.domains import host_from_url

# Event descriptions, in the form the manager logs them
EVENT_DESCRIPTIONS = {
    'page_load': "Triggered when a page finished loading",
    'page_unload': "Triggered when a page is navigated away from",
    'document_start': "Triggered before a document starts loading",
    'document_end': "Triggered when the document has been parsed",
    'content_blocked': "Triggered when content was blocked",
    'form_submission': "Triggered when a form is submitted",
    'action_clicked': "Triggered when an extension toolbar button is clicked",
    'context_menu_activated': "Triggered when the context menu is opened",
}


class EventType(Enum):
    PAGE_LOAD = "page_load"
    PAGE_UNLOAD = "page_unload"
    DOCUMENT_START = "document_start"
    DOCUMENT_END = "document_end"
    CONTENT_BLOCKED = "content_blocked"
    FORM_SUBMISSION = "form_submission"
    ACTION_CLICKED = "action_clicked"
    CONTEXT_MENU_ACTIVATED = "context_menu_activated"

    @property
    def description(self) -> str:
        return EVENT_DESCRIPTIONS[self.value]


@dataclass(frozen=True)
class ExtensionEvent:
    """
    A lifecycle or content event.

    Every event except ``ACTION_CLICKED`` is tied to a URL; the manager uses
    its host to decide which extensions receive it.
    """

    type: EventType
    url: Optional[str] = None
    request: Any = None
    form_data: Dict[str, str] = field(default_factory=dict)
    selected_text: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def domain(self) -> Optional[str]:
        """Host the event belongs to, or None for browser-wide events."""
        if not self.url:
            return None
        return host_from_url(self.url) or None

    @classmethod
    def page_load(cls, url: str) -> "ExtensionEvent":
        return cls(EventType.PAGE_LOAD, url)

    @classmethod
    def page_unload(cls, url: str) -> "ExtensionEvent":
        return cls(EventType.PAGE_UNLOAD, url)

    @classmethod
    def document_start(cls, url: str) -> "ExtensionEvent":
        return cls(EventType.DOCUMENT_START, url)

    @classmethod
    def document_end(cls, url: str) -> "ExtensionEvent":
        return cls(EventType.DOCUMENT_END, url)

    @classmethod
    def content_blocked(cls, url: str, request: Any = None, **details) -> "ExtensionEvent":
        return cls(EventType.CONTENT_BLOCKED, url, request=request, details=details)

    @classmethod
    def form_submission(cls, url: str, form_data: Dict[str, str]) -> "ExtensionEvent":
        return cls(EventType.FORM_SUBMISSION, url, form_data=dict(form_data))

    @classmethod
    def action_clicked(cls) -> "ExtensionEvent":
        return cls(EventType.ACTION_CLICKED)

    @classmethod
    def context_menu_activated(cls, url: str, selected_text: Optional[str] = None) -> "ExtensionEvent":
        return cls(EventType.CONTEXT_MENU_ACTIVATED, url, selected_text=selected_text)
