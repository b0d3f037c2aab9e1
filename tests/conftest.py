"""Shared fixtures: an in-memory rendering surface and isolated settings."""

import pytest

from browser_extensions.extensions.manager import ExtensionManager
from browser_extensions.navigation.surface import RenderingSurface
from browser_extensions.utils.config import Settings


class FakeSurface(RenderingSurface):
    """Rendering surface that records every call instead of rendering."""

    def __init__(self, url=None):
        self._url = url
        self.loaded = []
        self.reloads = 0
        self.stops = 0
        self.scripts = []
        self.clears = 0
        self.handlers = {}
        self.evaluated = []
        self.headers = {}
        self.user_agent = None

    @property
    def url(self):
        return self._url

    def load(self, url):
        self.loaded.append(url)

    def reload(self):
        self.reloads += 1

    def stop(self):
        self.stops += 1

    def register_script(self, source, phase, main_frame_only=True):
        self.scripts.append((source, phase, main_frame_only))

    def clear_scripts(self):
        self.clears += 1
        self.scripts = []

    def add_message_handler(self, name, callback):
        self.handlers.setdefault(name, []).append(callback)

    def evaluate_javascript(self, source):
        self.evaluated.append(source)

    def set_custom_header(self, name, value):
        if value is None:
            self.headers.pop(name, None)
        else:
            self.headers[name] = value

    def set_user_agent(self, user_agent):
        self.user_agent = user_agent

    def post(self, name, body):
        """Deliver a script message the way page code would."""
        for callback in self.handlers.get(name, []):
            callback(body)


@pytest.fixture
def settings(tmp_path):
    """Settings stored in a temporary directory."""
    store = Settings(str(tmp_path / "settings.json"))
    store.set("extensions.directory", str(tmp_path / "extensions"))
    return store


@pytest.fixture
def manager(settings):
    """Initialized manager with the default extensions installed."""
    manager = ExtensionManager(settings)
    manager.initialize()
    return manager


@pytest.fixture
def empty_manager(settings):
    """Manager with nothing installed and an empty catalog."""
    return ExtensionManager(settings)


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def page():
    """A page showing example.com."""
    return FakeSurface("https://example.com/")
