"""Tests for the extension manager."""

from browser_extensions.extensions.activation import Allowlist
from browser_extensions.extensions.bridge import MESSAGE_HANDLER_NAME
from browser_extensions.extensions.events import EventType, ExtensionEvent
from browser_extensions.extensions.extension import (
    BaseExtension,
    Capability,
    ContextMenuItem,
    ExtensionScript,
    InjectionTime,
    ToolbarItem,
)
from browser_extensions.extensions.manager import SCRIPT_CACHE_SIZE, ExtensionManager
from browser_extensions.navigation.request import ExtensionRequest
from browser_extensions.navigation.surface import DocumentPhase
from browser_extensions.utils.config import Settings


class RecordingExtension(BaseExtension):
    """Extension recording every hook call."""

    def __init__(self, ext_id="recording", capabilities=(Capability.INJECT_SCRIPTS,
                                                         Capability.MODIFY_REQUESTS,
                                                         Capability.INTEGRATE_TOOLBAR),
                 **kwargs):
        super().__init__(id=ext_id, name=ext_id.title(), version="1.0",
                         capabilities=capabilities, **kwargs)
        self.init_calls = 0
        self.cleanup_calls = 0
        self.script_calls = 0
        self.events = []
        self.taps = []
        self.selections = []
        self.failures = []

    def initialize(self, settings=None):
        self.init_calls += 1
        super().initialize(settings)

    def cleanup(self):
        self.cleanup_calls += 1

    def get_scripts_to_inject(self, url):
        self.script_calls += 1
        return [ExtensionScript(f"console.log({self.script_calls});", InjectionTime.ON_DOM_READY)]

    def handle_event(self, event):
        self.events.append(event)

    def on_navigation_failed(self, url, error):
        self.failures.append((url, error))

    @property
    def toolbar_item(self):
        return ToolbarItem(id=f"{self.id}-button", title=self.name)

    @property
    def context_menu_items(self):
        return [
            ContextMenuItem(id=f"{self.id}-page", title="Page action"),
            ContextMenuItem(id=f"{self.id}-selection", title="Selection action", requires_selection=True),
        ]

    def on_toolbar_item_tapped(self, page):
        self.taps.append(page)

    def on_context_menu_item_selected(self, item_id, page):
        self.selections.append(item_id)


class HeaderExtension(BaseExtension):
    def __init__(self, ext_id, header, value, block=False):
        super().__init__(id=ext_id, name=ext_id, version="1.0",
                         capabilities=[Capability.MODIFY_REQUESTS])
        self.header = header
        self.value = value
        self.block = block
        self.seen = []

    def modify_request(self, request):
        self.seen.append(request.header_items())
        return request.with_header(self.header, self.value)

    def should_block_request(self, request):
        return self.block


class BrokenExtension(RecordingExtension):
    def get_scripts_to_inject(self, url):
        raise RuntimeError("boom")

    def modify_request(self, request):
        raise RuntimeError("boom")

    def should_block_request(self, request):
        raise RuntimeError("boom")

    def handle_event(self, event):
        raise RuntimeError("boom")

    @property
    def toolbar_item(self):
        raise RuntimeError("boom")


# ----------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------

def test_initialize_installs_defaults(manager):
    assert [e.id for e in manager.installed] == ["content-blocker"]
    assert [e.id for e in manager.available] == [
        "content-blocker", "dark-mode", "user-agent-spoofer", "password-manager",
    ]
    assert manager.settings.get_installed_ids() == ["content-blocker"]


def test_initialize_is_idempotent(manager):
    manager.initialize()
    assert len(manager.installed) == 1
    assert len(manager.available) == 4


def test_initialize_restores_persisted_ids(settings):
    settings.set_installed_ids(["user-agent-spoofer", "password-manager", "no-such-extension"])

    manager = ExtensionManager(settings)
    manager.initialize()

    assert [e.id for e in manager.installed] == ["user-agent-spoofer", "password-manager"]
    assert not manager.is_installed("content-blocker")
    assert settings.get_installed_ids() == ["user-agent-spoofer", "password-manager"]


def test_uninstalled_default_stays_uninstalled(settings):
    first = ExtensionManager(settings)
    first.initialize()
    first.uninstall("content-blocker")

    second = ExtensionManager(Settings(settings.config_path))
    second.initialize()
    assert second.installed == []


def test_install_twice_keeps_one_entry(empty_manager):
    extension = RecordingExtension()

    assert empty_manager.install(extension)
    assert not empty_manager.install(extension)
    assert not empty_manager.install(RecordingExtension())

    assert [e.id for e in empty_manager.installed] == ["recording"]
    assert extension.init_calls == 1
    assert empty_manager.get("recording") is extension


def test_install_persists_ids_in_order(empty_manager, settings):
    empty_manager.install(RecordingExtension("a"))
    empty_manager.install(RecordingExtension("b"))
    assert settings.get_installed_ids() == ["a", "b"]


def test_uninstall(empty_manager, settings):
    extension = RecordingExtension()
    empty_manager.install(extension)

    assert empty_manager.uninstall("recording")
    assert extension.cleanup_calls == 1
    assert empty_manager.get("recording") is None
    assert empty_manager.installed == []
    assert settings.get_installed_ids() == []


def test_unknown_ids_are_silent_noops(empty_manager, page):
    assert not empty_manager.uninstall("missing")
    assert not empty_manager.toggle("missing")
    assert not empty_manager.dispatch_toolbar_tap("missing", page)
    assert not empty_manager.dispatch_context_menu_selection("missing", "item", page)


def test_install_by_id(manager):
    assert manager.install_by_id("dark-mode")
    assert manager.is_installed("dark-mode")
    assert not manager.install_by_id("no-such-extension")


def test_toggle_persists_enabled_flag(manager, settings):
    manager.install_by_id("dark-mode")
    manager.toggle("dark-mode")
    assert manager.get("dark-mode").enabled
    assert settings.get_preferences("dark-mode")["enabled"] is True

    restarted = ExtensionManager(Settings(settings.config_path))
    restarted.initialize()
    assert restarted.get("dark-mode").enabled


def test_enabled_extensions(empty_manager):
    empty_manager.install(RecordingExtension("a"))
    empty_manager.install(RecordingExtension("b", enabled=False))
    assert [e.id for e in empty_manager.enabled_extensions] == ["a"]


# ----------------------------------------------------------------------
# Scripts
# ----------------------------------------------------------------------

def test_scripts_are_cached(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)

    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    assert extension.script_calls == 1


def test_toggle_invalidates_script_cache(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)

    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    before = [source for source, _, _ in page.scripts]

    empty_manager.toggle("recording")
    assert empty_manager.prepare_content_for_navigation(page, "https://example.com/") == 0

    empty_manager.toggle("recording")
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    after = [source for source, _, _ in page.scripts]

    assert extension.script_calls == 2
    assert before != after


def test_preference_change_invalidates_script_cache(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)

    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    extension.save_preferences()
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    assert extension.script_calls == 2


def test_prepare_content_clears_previous_scripts(empty_manager, page):
    empty_manager.install(RecordingExtension())

    assert empty_manager.prepare_content_for_navigation(page, "https://example.com/") == 1
    assert empty_manager.prepare_content_for_navigation(page, "https://example.com/other") == 1

    assert len(page.scripts) == 1
    assert page.clears == 2


def test_prepare_content_wraps_and_maps_phases(empty_manager, page):
    class Timed(RecordingExtension):
        def get_scripts_to_inject(self, url):
            return [
                ExtensionScript("late();", InjectionTime.ON_PAGE_COMPLETE),
                ExtensionScript("early();", InjectionTime.BEFORE_DOCUMENT),
                ExtensionScript("elsewhere();", InjectionTime.BEFORE_DOCUMENT, for_url="https://other.org/"),
            ]

    empty_manager.install(Timed())
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")

    assert len(page.scripts) == 2
    (first, first_phase, main_only), (second, second_phase, _) = page.scripts
    assert "early();" in first and first_phase == DocumentPhase.DOCUMENT_START
    assert "late();" in second and second_phase == DocumentPhase.DOCUMENT_END
    assert main_only is True
    assert '"recording"' in first
    assert "browserExtensions" in first


def test_prepare_content_skips_inactive_extensions(empty_manager, page):
    empty_manager.install(RecordingExtension("scoped", activation_state=Allowlist(["other.org"])))
    empty_manager.install(RecordingExtension("disabled", enabled=False))
    empty_manager.install(RecordingExtension("no-scripts", capabilities=[Capability.MODIFY_REQUESTS]))

    assert empty_manager.prepare_content_for_navigation(page, "https://example.com/") == 0
    assert empty_manager.prepare_content_for_navigation(page, "https://www.other.org/") == 1


def test_prepare_content_attaches_bridge_once(empty_manager, page):
    empty_manager.install(RecordingExtension())
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    assert len(page.handlers[MESSAGE_HANDLER_NAME]) == 1


def test_prepare_content_fires_document_start(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    assert [e.type for e in extension.events] == [EventType.DOCUMENT_START]


def test_failing_extension_is_isolated(empty_manager, page):
    good = RecordingExtension("good")
    empty_manager.install(BrokenExtension("broken"))
    empty_manager.install(good)

    assert empty_manager.prepare_content_for_navigation(page, "https://example.com/") == 1
    request = ExtensionRequest("https://example.com/")
    assert not empty_manager.should_block_request(request)
    assert empty_manager.modify_request(request) == request

    empty_manager.notify_page_loaded("https://example.com/")
    assert EventType.PAGE_LOAD in [e.type for e in good.events]

    assert [item.extension_id for item in empty_manager.toolbar_items(page)] == ["good"]


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------

def test_modify_request_runs_in_install_order(empty_manager):
    a = HeaderExtension("a", "X-First", "1")
    b = HeaderExtension("b", "X-Second", "2")
    empty_manager.install(a)
    empty_manager.install(b)

    result = empty_manager.modify_request(ExtensionRequest("https://example.com/"))

    assert result.headers["X-First"] == "1"
    assert result.headers["X-Second"] == "2"
    assert a.seen == [{}]
    assert b.seen == [{"X-First": "1"}]


def test_modify_request_composes_overrides(empty_manager):
    empty_manager.install(HeaderExtension("a", "X-Value", "first"))
    empty_manager.install(HeaderExtension("b", "x-value", "second"))

    result = empty_manager.modify_request(ExtensionRequest("https://example.com/"))
    assert result.headers["X-Value"] == "second"


def test_blocking_is_logical_or(empty_manager):
    empty_manager.install(HeaderExtension("a", "X", "1", block=True))
    empty_manager.install(HeaderExtension("b", "Y", "2", block=False))
    assert empty_manager.should_block_request(ExtensionRequest("https://example.com/"))


def test_nothing_blocks_by_default(empty_manager):
    empty_manager.install(HeaderExtension("a", "X", "1"))
    assert not empty_manager.should_block_request(ExtensionRequest("https://example.com/"))


def test_blocked_request_fires_content_blocked(empty_manager):
    listener = RecordingExtension("listener")
    empty_manager.install(HeaderExtension("blocker", "X", "1", block=True))
    empty_manager.install(listener)

    request = ExtensionRequest("https://example.com/ad.js")
    empty_manager.should_block_request(request)

    blocked = [e for e in listener.events if e.type == EventType.CONTENT_BLOCKED]
    assert len(blocked) == 1
    assert blocked[0].request == request
    assert blocked[0].details["extension_id"] == "blocker"


def test_modify_response_folds_bodies(empty_manager):
    class Upper(BaseExtension):
        def modify_response(self, request, body):
            return body.upper()

    class Broken(BaseExtension):
        def modify_response(self, request, body):
            return "not bytes"

    empty_manager.install(Upper(id="upper", name="Upper", version="1",
                                capabilities=[Capability.MODIFY_REQUESTS]))
    empty_manager.install(Broken(id="broken", name="Broken", version="1",
                                 capabilities=[Capability.MODIFY_REQUESTS]))

    request = ExtensionRequest("https://example.com/")
    assert empty_manager.modify_response(request, b"hello") == b"HELLO"


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------

def test_notify_routes_by_domain(empty_manager):
    everywhere = RecordingExtension("everywhere")
    scoped = RecordingExtension("scoped", activation_state=Allowlist(["other.org"]))
    disabled = RecordingExtension("disabled", enabled=False)
    for extension in (everywhere, scoped, disabled):
        empty_manager.install(extension)

    empty_manager.notify_page_loaded("https://example.com/")
    empty_manager.notify(ExtensionEvent.action_clicked())

    assert [e.type for e in everywhere.events] == [EventType.PAGE_LOAD, EventType.ACTION_CLICKED]
    assert [e.type for e in scoped.events] == [EventType.ACTION_CLICKED]
    assert disabled.events == []


def test_notify_helpers(empty_manager):
    extension = RecordingExtension()
    empty_manager.install(extension)

    empty_manager.notify_page_unloaded("https://example.com/")
    empty_manager.notify_document_end("https://example.com/")
    empty_manager.notify_form_submitted("https://example.com/", {"q": "search"})
    empty_manager.notify_context_menu("https://example.com/", "text")

    assert [e.type for e in extension.events] == [
        EventType.PAGE_UNLOAD,
        EventType.DOCUMENT_END,
        EventType.FORM_SUBMISSION,
        EventType.CONTEXT_MENU_ACTIVATED,
    ]
    assert extension.events[2].form_data == {"q": "search"}
    assert extension.events[3].selected_text == "text"


def test_navigation_failure_reaches_extensions(empty_manager):
    extension = RecordingExtension()
    empty_manager.install(extension)

    error = ConnectionError("offline")
    empty_manager.notify_navigation_failed("https://example.com/", error)
    assert extension.failures == [("https://example.com/", error)]


# ----------------------------------------------------------------------
# UI
# ----------------------------------------------------------------------

def test_toolbar_items(empty_manager, page):
    empty_manager.install(RecordingExtension("a"))
    empty_manager.install(RecordingExtension("b", capabilities=[Capability.INJECT_SCRIPTS]))
    empty_manager.install(RecordingExtension("c", enabled=False))

    items = empty_manager.toolbar_items(page)
    assert [(i.extension_id, i.item.id) for i in items] == [("a", "a-button")]


def test_context_menu_items_respect_selection(empty_manager, page):
    empty_manager.install(RecordingExtension())

    without = empty_manager.context_menu_items(page)
    blank = empty_manager.context_menu_items(page, "   ")
    with_selection = empty_manager.context_menu_items(page, "hello")

    assert [i.item.id for i in without] == ["recording-page"]
    assert [i.item.id for i in blank] == ["recording-page"]
    assert [i.item.id for i in with_selection] == ["recording-page", "recording-selection"]


def test_uninstall_removes_ui_items(empty_manager, page):
    empty_manager.install(RecordingExtension())
    assert empty_manager.toolbar_items(page)
    assert empty_manager.context_menu_items(page, "text")

    empty_manager.uninstall("recording")
    assert empty_manager.toolbar_items(page) == []
    assert empty_manager.context_menu_items(page, "text") == []


def test_dispatch_toolbar_tap(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")

    assert empty_manager.dispatch_toolbar_tap("recording", page)
    assert extension.taps == [page]
    assert extension.events[-1].type == EventType.ACTION_CLICKED

    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    assert extension.script_calls == 2


def test_dispatch_context_menu_selection(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)

    assert empty_manager.dispatch_context_menu_selection("recording", "recording-page", page)
    assert extension.selections == ["recording-page"]


# ----------------------------------------------------------------------
# Bridge
# ----------------------------------------------------------------------

def test_script_messages_reach_bridge(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")

    page.post(MESSAGE_HANDLER_NAME, {
        "extensionId": "recording",
        "message": {"type": "content_blocked", "url": "https://example.com/", "selector": ".ad"},
    })

    blocked = [e for e in extension.events if e.type == EventType.CONTENT_BLOCKED]
    assert len(blocked) == 1
    assert blocked[0].details == {"selector": ".ad"}


def test_late_messages_after_uninstall_are_dropped(empty_manager):
    extension = RecordingExtension()
    empty_manager.install(extension)
    empty_manager.uninstall("recording")

    assert not empty_manager.handle_script_message({
        "extensionId": "recording",
        "message": {"type": "content_blocked", "url": "https://example.com/"},
    })
    assert extension.events == []


def test_set_enabled_invalidates_scripts_and_persists(settings, page):
    manager = ExtensionManager(settings)
    extension = RecordingExtension()
    manager.install(extension)

    manager.prepare_content_for_navigation(page, "https://example.com/")
    assert manager.set_enabled("recording", False)
    assert manager.prepare_content_for_navigation(page, "https://example.com/") == 0

    assert manager.set_enabled("recording", True)
    manager.prepare_content_for_navigation(page, "https://example.com/")
    assert extension.script_calls == 2
    assert settings.get_preferences("recording")["enabled"] is True

    assert not manager.set_enabled("missing", True)


def test_invalidate_all_scripts(empty_manager, page):
    first = RecordingExtension("first")
    second = RecordingExtension("second")
    empty_manager.install(first)
    empty_manager.install(second)

    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    empty_manager.invalidate_scripts()
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")

    assert first.script_calls == 2
    assert second.script_calls == 2


def test_register_available_does_not_install(empty_manager):
    extension = RecordingExtension()
    empty_manager.register_available(extension)
    empty_manager.register_available(RecordingExtension())

    assert empty_manager.available == [extension]
    assert not empty_manager.is_installed("recording")
    assert empty_manager.install_by_id("recording")
    assert empty_manager.get("recording") is extension


def test_describe():
    extension = RecordingExtension(activation_state=Allowlist(["example.com"]))
    summary = extension.describe()

    assert summary["id"] == "recording"
    assert summary["enabled"] is True
    assert summary["capabilities"] == ["inject_scripts", "integrate_toolbar", "modify_requests"]
    assert "example.com" in summary["activation"]


def test_script_cache_is_bounded(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)

    for i in range(SCRIPT_CACHE_SIZE * 5):
        empty_manager.prepare_content_for_navigation(page, f"https://example.com/article/{i}")

    assert len(empty_manager._script_cache["recording"]) == SCRIPT_CACHE_SIZE


def test_script_cache_keeps_recent_urls(empty_manager, page):
    extension = RecordingExtension()
    empty_manager.install(extension)

    empty_manager.prepare_content_for_navigation(page, "https://example.com/home")
    for i in range(SCRIPT_CACHE_SIZE + 5):
        empty_manager.prepare_content_for_navigation(page, f"https://example.com/{i}")
        empty_manager.prepare_content_for_navigation(page, "https://example.com/home")

    # Only the first visit to the home page computed scripts
    assert extension.script_calls == 1 + SCRIPT_CACHE_SIZE + 5


class UnreferenceablePage:
    """Page that cannot be weakly referenced."""

    __slots__ = ("handlers",)

    def __init__(self):
        self.handlers = []

    def clear_scripts(self):
        pass

    def register_script(self, source, phase, main_frame_only=True):
        pass

    def add_message_handler(self, name, callback):
        self.handlers.append(name)


def test_bridge_attached_once_to_unreferenceable_page(empty_manager):
    page = UnreferenceablePage()

    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    empty_manager.prepare_content_for_navigation(page, "https://example.com/next")

    assert page.handlers == [MESSAGE_HANDLER_NAME]


def test_bridge_attach_failure_is_retried(empty_manager, page):
    calls = []

    def flaky(name, callback):
        calls.append(name)
        if len(calls) == 1:
            raise RuntimeError("surface not ready")
        page.handlers.setdefault(name, []).append(callback)

    page.add_message_handler = flaky

    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")
    empty_manager.prepare_content_for_navigation(page, "https://example.com/")

    assert len(calls) == 2
    assert len(page.handlers[MESSAGE_HANDLER_NAME]) == 1
