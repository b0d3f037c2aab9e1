"""
Browser Extensions - extension subsystem for an embeddable web view.

Logging output is configured by the embedding application, e.g. with
``browser_extensions.utils.logging.setup_logging``.
"""

# Package information
__version__ = "1.0.0"
__author__ = "Browser Extensions Team"
__description__ = "Extension model, built-in extensions and extension manager for web browsers"
