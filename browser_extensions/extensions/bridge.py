"""
Messaging bridge between injected page scripts and the extension manager.

Page side: every injected script is wrapped so it can reach
``window.browserExtensions.extension`` with ``sendMessage``, a per-extension
key/value ``storage``, tracked timers and an ``onCommand`` listener.

Host side: ``MessageBridge`` demultiplexes posted messages by extension id and
dispatches them by their ``type``. ``push_command`` sends a fire-and-forget
command to the page.
"""

import json
import logging
from typing import Any, Dict, Optional

from browser_extensions.extensions.events import EventType, ExtensionEvent
from browser_extensions.utils.logging import log_exception

logger = logging.getLogger(__name__)

# Name of the script message handler registered on the surface
MESSAGE_HANDLER_NAME = "extensionMessageHandler"

# DOM event the page-side listeners receive host commands on
COMMAND_EVENT_NAME = "browser-extension-message"

# Prefix of the localStorage key holding an extension's storage
STORAGE_KEY_PREFIX = "browser_extension_"

STORAGE_UPDATED = "storage_updated"
CONTENT_BLOCKED = "content_blocked"

_WRAPPER_TEMPLATE = """(function() {
    var extensionId = %(extension_id)s;
    var storageKey = %(storage_key)s;
    var root = window.browserExtensions = window.browserExtensions || {registry: {}};

    // A previous injection for this extension on this document owns timers
    // that must not keep running.
    var previous = root.registry[extensionId];
    if (previous && previous.clearTimers) {
        previous.clearTimers();
    }

    var timers = [];

    function post(payload) {
        try {
            if (window.webkit && window.webkit.messageHandlers &&
                window.webkit.messageHandlers.%(handler)s) {
                window.webkit.messageHandlers.%(handler)s.postMessage(payload);
            } else if (window.browserExtensionsHost && window.browserExtensionsHost.postMessage) {
                window.browserExtensionsHost.postMessage(%(handler_name)s, payload);
            }
        } catch (e) {
            console.error('Failed to send extension message:', e);
        }
    }

    function readStorage() {
        try {
            return JSON.parse(localStorage.getItem(storageKey) || '{}') || {};
        } catch (e) {
            return {};
        }
    }

    function writeStorage(data) {
        try {
            localStorage.setItem(storageKey, JSON.stringify(data));
            return true;
        } catch (e) {
            return false;
        }
    }

    var api = {
        id: extensionId,

        sendMessage: function(message) {
            post({extensionId: extensionId, message: message});
        },

        storage: {
            get: function(key) {
                return readStorage()[key];
            },
            set: function(key, value) {
                var data = readStorage();
                data[key] = value;
                var ok = writeStorage(data);
                api.sendMessage({type: %(storage_updated)s, key: key, value: value});
                return ok;
            },
            remove: function(key) {
                var data = readStorage();
                delete data[key];
                var ok = writeStorage(data);
                api.sendMessage({type: %(storage_updated)s, key: key, value: null});
                return ok;
            },
            keys: function() {
                return Object.keys(readStorage());
            }
        },

        setInterval: function(fn, ms) {
            var handle = window.setInterval(fn, ms);
            timers.push(['interval', handle]);
            return handle;
        },

        setTimeout: function(fn, ms) {
            var handle = window.setTimeout(fn, ms);
            timers.push(['timeout', handle]);
            return handle;
        },

        clearTimers: function() {
            timers.forEach(function(timer) {
                if (timer[0] === 'interval') {
                    window.clearInterval(timer[1]);
                } else {
                    window.clearTimeout(timer[1]);
                }
            });
            timers = [];
        },

        onCommand: function(callback) {
            document.addEventListener(%(command_event)s, function(e) {
                var detail = e.detail || {};
                if (!detail.extensionId || detail.extensionId === extensionId) {
                    callback(detail.command || detail);
                }
            });
        }
    };

    root.registry[extensionId] = api;
    window.addEventListener('pagehide', function() { api.clearTimers(); });

    (function(extension) {
%(source)s
    })(api);
})();
"""

_COMMAND_TEMPLATE = """(function() {
    var event = new CustomEvent(%(command_event)s, {detail: %(detail)s});
    document.dispatchEvent(event);
})();
"""


def js_literal(value: Any) -> str:
    """
    Encode a value as a JavaScript literal.

    ``</`` is escaped so the literal stays inert inside inline ``<script>``.
    """
    return json.dumps(value).replace("</", "<\\/")


def storage_key(extension_id: str) -> str:
    """localStorage key holding an extension's page-side storage."""
    return f"{STORAGE_KEY_PREFIX}{extension_id}"


def wrap_script(source: str, extension_id: str) -> str:
    """
    Wrap an extension script with the page-side messaging API.

    Inside the wrapped script the API is available both as ``extension`` and
    as ``window.browserExtensions.extension`` (the last one injected).

    Args:
        source: Extension script source
        extension_id: Id of the extension owning the script

    Returns:
        str: Wrapped JavaScript source
    """
    source = "        window.browserExtensions.extension = extension;\n" + source
    return _WRAPPER_TEMPLATE % {
        "extension_id": js_literal(extension_id),
        "storage_key": js_literal(storage_key(extension_id)),
        "handler": MESSAGE_HANDLER_NAME,
        "handler_name": js_literal(MESSAGE_HANDLER_NAME),
        "storage_updated": js_literal(STORAGE_UPDATED),
        "command_event": js_literal(COMMAND_EVENT_NAME),
        "source": source,
    }


def build_command_script(command: Dict[str, Any], extension_id: Optional[str] = None) -> str:
    """
    Build the script that delivers a command to page-side listeners.

    Args:
        command: Command payload, e.g. ``{"type": "toggle_dark_mode"}``
        extension_id: Restrict delivery to one extension's listeners

    Returns:
        str: JavaScript source
    """
    detail = dict(command)
    if extension_id is not None:
        detail = {"extensionId": extension_id, "command": dict(command)}
    return _COMMAND_TEMPLATE % {
        "command_event": js_literal(COMMAND_EVENT_NAME),
        "detail": js_literal(detail),
    }


def push_command(page: Any, command: Dict[str, Any], extension_id: Optional[str] = None) -> bool:
    """
    Push a command to the page. Fire-and-forget: there is no acknowledgment.

    Args:
        page: Page or surface exposing ``evaluate_javascript``
        command: Command payload
        extension_id: Restrict delivery to one extension's listeners

    Returns:
        bool: True if the script was handed to the page
    """
    if page is None:
        return False

    try:
        page.evaluate_javascript(build_command_script(command, extension_id))
        return True
    except Exception as e:
        logger.error(f"Error pushing command {command!r} to page: {e}")
        return False


class MessageBridge:
    """Host-side end of the messaging bridge."""

    def __init__(self, manager):
        """
        Initialize the bridge.

        Args:
            manager: Extension manager used to look up and notify extensions
        """
        self.manager = manager

        # Host-side mirror of the page-side storage, per extension id
        self.storage: Dict[str, Dict[str, Any]] = {}

    def handle_message(self, body: Any) -> bool:
        """
        Handle a message posted by page-side code.

        Args:
            body: Raw message body, ``{"extensionId": ..., "message": {...}}``

        Returns:
            bool: True if the message was dispatched
        """
        if not isinstance(body, dict):
            logger.warning(f"Dropping malformed extension message: {body!r}")
            return False

        extension_id = body.get("extensionId")
        message = body.get("message")
        if not isinstance(extension_id, str) or not isinstance(message, dict):
            logger.warning(f"Dropping malformed extension message: {body!r}")
            return False

        message_type = message.get("type")
        if not isinstance(message_type, str):
            logger.warning(f"Dropping extension message without type from {extension_id}")
            return False

        extension = self.manager.get(extension_id)
        if extension is None:
            # Messages can arrive after the extension was uninstalled
            logger.debug(f"Dropping {message_type} message for unknown extension {extension_id}")
            return False

        try:
            if message_type == STORAGE_UPDATED:
                return self._handle_storage_updated(extension_id, message)
            elif message_type == CONTENT_BLOCKED:
                return self._handle_content_blocked(extension, message)
        except Exception as e:
            log_exception(logger, e, f"Error handling {message_type} message from {extension_id}")
            return False

        logger.warning(f"Unknown extension message type from {extension_id}: {message_type}")
        return False

    def _handle_storage_updated(self, extension_id: str, message: Dict[str, Any]) -> bool:
        key = message.get("key")
        if not isinstance(key, str):
            logger.warning(f"Dropping storage update without key from {extension_id}")
            return False

        values = self.storage.setdefault(extension_id, {})
        if message.get("value") is None:
            values.pop(key, None)
        else:
            values[key] = message["value"]

        logger.debug(f"Extension {extension_id} updated storage key {key}")
        return True

    def _handle_content_blocked(self, extension, message: Dict[str, Any]) -> bool:
        url = message.get("url")
        if not isinstance(url, str):
            url = None

        # Page-supplied keys only ever land in details; a request never comes from the page
        details = {k: v for k, v in message.items() if k not in ("type", "url")}
        event = ExtensionEvent(EventType.CONTENT_BLOCKED, url, details=details)
        self.manager.deliver_event(extension, event)
        return True

    def storage_snapshot(self, extension_id: str) -> Dict[str, Any]:
        """Copy of the last known page-side storage of an extension."""
        return dict(self.storage.get(extension_id, {}))

    def forget(self, extension_id: str) -> None:
        """Drop host-side state of an extension."""
        self.storage.pop(extension_id, None)
