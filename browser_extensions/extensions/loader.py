"""
User-installed extensions.

A user extension is a directory holding an ``extprops.csv`` file and the
scripts it lists. Metadata rows start with ``@``; script rows name a file and
the comma separated load stages it runs at::

    Key,Value
    @name,Highlighter
    @version,1.0.0
    @description,Highlights headings
    @enabled,true
    @matches,example.com,example.org

    Script,Events
    main.js,"page_load,dom_ready"
"""

import csv
import logging
import os
import re
from typing import Dict, List, Optional, Tuple

from browser_extensions.extensions.activation import ALWAYS, Allowlist
from browser_extensions.extensions.extension import (
    BaseExtension,
    Capability,
    ExtensionCategory,
    ExtensionIcon,
    ExtensionPermission,
    ExtensionScript,
    InjectionTime,
)

logger = logging.getLogger(__name__)

PROPS_FILE = "extprops.csv"

# Blocked patterns for JavaScript security
BLOCKED_JS_PATTERNS = [
    # Infinite loops
    r'while\s*\(\s*true\s*\)',
    r'while\s*\(\s*1\s*\)',
    r'for\s*\(\s*;;\s*\)',

    # Dynamic code
    r'\beval\s*\(',
    r'\bFunction\s*\(\s*["\']',
    r'document\.write\s*\(',

    # Storage outside the extension's own area
    r'\blocalStorage\.',
    r'\bsessionStorage\.',
    r'\bindexedDB\.',
    r'navigator\.geolocation',
    r'navigator\.credentials',

    # Network requests
    r'\bfetch\s*\(',
    r'XMLHttpRequest',

    # Crypto operations (potential for cryptojacking)
    r'crypto\.subtle',
    r'window\.crypto',

    # Navigation and cookie tampering
    r'document\.domain\s*=',
    r'document\.cookie\s*=',
    r'\blocation\s*=[^=]',
    r'location\.href\s*=[^=]',
    r'location\.replace\s*\(',
    r'window\.open\s*\(',
]

# Load stage names accepted in the Events column
SCRIPT_EVENTS = {
    'document_start': InjectionTime.BEFORE_DOCUMENT,
    'before_document': InjectionTime.BEFORE_DOCUMENT,
    'after_document': InjectionTime.AFTER_DOCUMENT,
    'dom_ready': InjectionTime.ON_DOM_READY,
    'page_load': InjectionTime.ON_PAGE_COMPLETE,
}


class ExtensionLoadError(Exception):
    """Raised when an extension directory cannot be loaded."""


class ScriptedExtension(BaseExtension):
    """Extension defined by a directory of scripts."""

    def __init__(self, ext_id: str, path: str, scripts: List[ExtensionScript],
                 name: Optional[str] = None, version: str = "unknown",
                 description: str = "", author: str = "", enabled: bool = True,
                 matches: Optional[List[str]] = None):
        super().__init__(
            id=ext_id,
            name=name or ext_id,
            version=version,
            description=description,
            author=author,
            icon=ExtensionIcon.system("puzzlepiece.extension"),
            enabled=enabled,
            category=ExtensionCategory.OTHER,
            permissions=[ExtensionPermission.READ_CURRENT_PAGE, ExtensionPermission.MODIFY_WEB_CONTENT],
            capabilities=[Capability.INJECT_SCRIPTS],
            activation_state=Allowlist(matches) if matches else ALWAYS
        )
        self.path = path
        self.scripts = list(scripts)

    def get_scripts_to_inject(self, url: str) -> Optional[List[ExtensionScript]]:
        if not self.enabled or not self.scripts:
            return None
        return list(self.scripts)


def validate_script(script_content: str, js_filter: bool = True) -> bool:
    """
    Validate a script for security issues.

    Args:
        script_content: JavaScript code to validate
        js_filter: Whether filtering is enabled at all

    Returns:
        bool: True if the script is safe, False otherwise
    """
    if not js_filter:
        return True

    for pattern in BLOCKED_JS_PATTERNS:
        if re.search(pattern, script_content):
            logger.warning(f"Script contains blocked pattern: {pattern}")
            return False

    return True


def read_props(props_file: str) -> Tuple[Dict[str, str], List[Tuple[str, List[str]]]]:
    """
    Parse an ``extprops.csv`` file.

    Args:
        props_file: Path to the file

    Returns:
        Tuple: (metadata, [(script file, events)])
    """
    metadata: Dict[str, str] = {}
    scripts: List[Tuple[str, List[str]]] = []

    with open(props_file, 'r', encoding='utf-8', newline='') as f:
        reader = csv.reader(f)
        next(reader, None)  # Header row

        for row in reader:
            if len(row) < 2 or not row[0].strip():
                continue

            key = row[0].strip()
            if key.startswith("@"):
                # A metadata value may have been split on commas (@matches)
                metadata[key[1:].lower()] = ",".join(row[1:]).strip()
            elif key.lower() == "script":
                continue
            else:
                events = [e.strip() for e in ",".join(row[1:]).split(",") if e.strip()]
                scripts.append((key, events))

    return metadata, scripts


def load_extension(ext_path: str, js_filter: bool = True) -> ScriptedExtension:
    """
    Load a single extension directory.

    Scripts that are missing, fail validation or list no known load stage
    are skipped with a warning; the rest of the extension still loads.

    Args:
        ext_path: Path to the extension directory
        js_filter: Reject scripts matching BLOCKED_JS_PATTERNS

    Returns:
        ScriptedExtension: The loaded extension

    Raises:
        ExtensionLoadError: If the directory is not a valid extension
    """
    ext_id = os.path.basename(os.path.normpath(ext_path))
    props_file = os.path.join(ext_path, PROPS_FILE)

    if not os.path.isfile(props_file):
        raise ExtensionLoadError(f"Extension {ext_id} does not have an {PROPS_FILE} file")

    try:
        metadata, script_info = read_props(props_file)
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise ExtensionLoadError(f"Cannot read {props_file}: {e}") from e

    scripts = []
    for script_file, events in script_info:
        script_path = os.path.join(ext_path, script_file)

        # Script paths must stay inside the extension directory
        if os.path.commonpath([os.path.abspath(script_path), os.path.abspath(ext_path)]) != os.path.abspath(ext_path):
            logger.warning(f"Script {script_file} of extension {ext_id} is outside its directory")
            continue

        if not os.path.isfile(script_path):
            logger.warning(f"Script {script_file} does not exist for extension {ext_id}")
            continue

        try:
            with open(script_path, 'r', encoding='utf-8') as f:
                script_content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read script {script_file} of extension {ext_id}: {e}")
            continue

        if not validate_script(script_content, js_filter):
            logger.warning(f"Script {script_file} for extension {ext_id} failed validation")
            continue

        timings = []
        for event in events:
            timing = SCRIPT_EVENTS.get(event)
            if timing is None:
                logger.debug(f"Ignoring unknown event {event} for script {script_file}")
            elif timing not in timings:
                timings.append(timing)

        if not timings:
            logger.warning(f"Script {script_file} for extension {ext_id} has no known events")
            continue

        # Earliest stage wins; running the same source twice would double its effects
        scripts.append(ExtensionScript(script_content, min(timings, key=list(InjectionTime).index)))

    matches = [m.strip() for m in metadata.get("matches", "").split(",") if m.strip()]

    extension = ScriptedExtension(
        ext_id,
        ext_path,
        scripts,
        name=metadata.get("name"),
        version=metadata.get("version", "unknown"),
        description=metadata.get("description", ""),
        author=metadata.get("author", ""),
        enabled=metadata.get("enabled", "true").lower() == "true",
        matches=matches
    )

    logger.debug(f"Loaded extension {ext_id} with {len(scripts)} scripts")
    return extension


def load_extensions_from_directory(extensions_dir: Optional[str], js_filter: bool = True) -> List[ScriptedExtension]:
    """
    Load every extension in a directory.

    Args:
        extensions_dir: Directory holding one sub-directory per extension
        js_filter: Reject scripts matching BLOCKED_JS_PATTERNS

    Returns:
        List[ScriptedExtension]: Loaded extensions, sorted by id
    """
    if not extensions_dir or not os.path.isdir(extensions_dir):
        logger.debug(f"Extensions directory does not exist: {extensions_dir}")
        return []

    extensions = []
    for entry in sorted(os.listdir(extensions_dir)):
        ext_path = os.path.join(extensions_dir, entry)
        if not os.path.isdir(ext_path):
            continue

        try:
            extensions.append(load_extension(ext_path, js_filter))
        except ExtensionLoadError as e:
            logger.warning(str(e))

    logger.info(f"Loaded {len(extensions)} extensions from {extensions_dir}")
    return extensions


def create_extension_structure(ext_dir: str, name: str, description: str) -> bool:
    """
    Create a new extension skeleton.

    Args:
        ext_dir: Directory to create the extension in
        name: Extension name
        description: Extension description

    Returns:
        bool: True if the extension was created, False otherwise
    """
    try:
        os.makedirs(ext_dir, exist_ok=True)

        props_file = os.path.join(ext_dir, PROPS_FILE)
        with open(props_file, 'w', encoding='utf-8', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(["Key", "Value"])
            writer.writerow(["@name", name])
            writer.writerow(["@version", "1.0.0"])
            writer.writerow(["@description", description])
            writer.writerow(["@enabled", "true"])
            writer.writerow([])
            writer.writerow(["Script", "Events"])
            writer.writerow(["main.js", "dom_ready"])

        script_file = os.path.join(ext_dir, "main.js")
        with open(script_file, 'w', encoding='utf-8') as f:
            f.write("// Runs once the DOM is ready; the page API is available as `extension`\n")
            f.write("console.log('Extension loaded: ' + extension.id);\n\n")
            f.write("var visits = (extension.storage.get('visits') || 0) + 1;\n")
            f.write("extension.storage.set('visits', visits);\n")

        logger.info(f"Created extension structure in {ext_dir}")
        return True

    except Exception as e:
        logger.error(f"Error creating extension structure: {e}")
        return False
