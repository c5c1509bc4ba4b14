"""
template_store.py - Local Template Cache

Owns two mappings keyed by the case-insensitive display name:

    name → Template            (durable: one <key>.fpt artifact per name)
    name → enrollment id       (durable: store.json index)

The store is the source of truth for "can this kiosk verify this person
locally".  One re-entrant lock guards every operation, so concurrent
workflows touching the same name are serialised.
"""

import os
import json
import base64
import logging
import tempfile
import threading
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote

from kiosk import crypto
from kiosk.errors import TemplateIntegrityError
from kiosk.reader import Template

logger = logging.getLogger(__name__)

ARTIFACT_EXT  = ".fpt"
TOMBSTONE_EXT = ".deleting"
INDEX_FILE    = "store.json"
INDEX_VERSION = 1


def name_key(name: str) -> str:
    """Lookup key for a display name: trimmed and case-folded."""
    key = name.strip().casefold()
    if not key:
        raise ValueError("Name is empty.")
    return key


def artifact_filename(key: str) -> str:
    return quote(key, safe=" ._-") + ARTIFACT_EXT


def _atomic_write(path: str, data: bytes):
    directory = os.path.dirname(path)
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class TemplateStore:
    """
    Parameters
    ----------
    directory  : template directory, created if missing
    hydrate    : bytes → Template; normally the reader's import_template.
                 Raises ValueError for bytes the reader cannot use.
    passphrase : when set, artifacts are AES-256-GCM encrypted at rest
    """

    def __init__(self, directory: str, hydrate: Callable[[bytes], Template] = None,
                 passphrase: str = None):
        self._dir = directory
        self._hydrate = hydrate or (lambda data: Template(data=bytes(data)))
        self._lock = threading.RLock()
        self._templates: Dict[str, Template] = {}
        self._names: Dict[str, str] = {}
        self._bindings: Dict[str, int] = {}
        self._salt: Optional[bytes] = None

        os.makedirs(directory, exist_ok=True)
        self._read_index()

        self._key = None
        if passphrase:
            if self._salt is None:
                self._salt = crypto.new_salt()
                self._write_index(self._names, self._bindings)
            self._key = crypto.derive_key(passphrase, self._salt)

    # ──────────────────────────────────────────
    # INDEX
    # ──────────────────────────────────────────
    @property
    def _index_path(self) -> str:
        return os.path.join(self._dir, INDEX_FILE)

    def _artifact_path(self, key: str) -> str:
        return os.path.join(self._dir, artifact_filename(key))

    def _read_index(self):
        if not os.path.exists(self._index_path):
            return
        with open(self._index_path, encoding="utf-8") as f:
            index = json.load(f)
        salt = index.get("kdf_salt")
        self._salt = base64.b64decode(salt) if salt else None
        for key, entry in index.get("entries", {}).items():
            self._names[key] = entry.get("name") or key
            if entry.get("enrollment_id") is not None:
                self._bindings[key] = int(entry["enrollment_id"])

    def _write_index(self, names: Dict[str, str], bindings: Dict[str, int]):
        entries = {}
        for key in set(names) | set(bindings):
            entries[key] = {
                "name": names.get(key, key),
                "enrollment_id": bindings.get(key),
            }
        index = {
            "version": INDEX_VERSION,
            "kdf_salt": base64.b64encode(self._salt).decode() if self._salt else None,
            "entries": entries,
        }
        _atomic_write(self._index_path, json.dumps(index, indent=2, sort_keys=True).encode("utf-8"))

    # ──────────────────────────────────────────
    # START-UP
    # ──────────────────────────────────────────
    def load(self) -> List[Tuple[str, Exception]]:
        """
        Hydrate every artifact in the directory into memory.

        Returns (name, error) for each artifact that could not be loaded;
        those names stay unavailable for local verification.
        """
        failures = []
        adopted = False
        with self._lock:
            for filename in os.listdir(self._dir):
                if filename.endswith(ARTIFACT_EXT + TOMBSTONE_EXT):
                    self._settle_tombstone(os.path.join(self._dir, filename))

            for filename in sorted(os.listdir(self._dir)):
                if not filename.endswith(ARTIFACT_EXT):
                    continue
                path = os.path.join(self._dir, filename)
                key = None
                for candidate in self._names:
                    if artifact_filename(candidate) == filename:
                        key = candidate
                        break
                display = None
                try:
                    if key is None:
                        # Legacy artifact with no index entry: the file stem is the name
                        display = unquote(filename[:-len(ARTIFACT_EXT)]).strip()
                        key = name_key(display)
                        path = self._adopt_legacy(path, key)
                    self._templates[key] = self._read_artifact(path)
                    if display is not None:
                        self._names.setdefault(key, display)
                        adopted = True
                except (OSError, ValueError, TemplateIntegrityError) as e:
                    logger.error(f"Cannot load template '{filename}': {e}")
                    failures.append((self._names.get(key, display or filename), e))
            if adopted:
                self._write_index(self._names, self._bindings)
        logger.info(f"Loaded {len(self._templates)} template(s) from {self._dir}")
        return failures

    def _adopt_legacy(self, path: str, key: str) -> str:
        """Move a legacy artifact to the canonical filename for *key*."""
        canonical = self._artifact_path(key)
        if path == canonical:
            return path
        if os.path.exists(canonical) and not os.path.samefile(path, canonical):
            raise FileExistsError(f"{os.path.basename(canonical)} already exists")
        os.replace(path, canonical)
        logger.info(f"Renamed legacy artifact {os.path.basename(path)} → {os.path.basename(canonical)}")
        return canonical

    def _settle_tombstone(self, tomb: str):
        """Finish or undo a removal interrupted by a crash."""
        path = tomb[:-len(TOMBSTONE_EXT)]
        owned = any(self._artifact_path(k) == path for k in self._names)
        if owned and not os.path.exists(path):
            os.replace(tomb, path)
            logger.warning(f"Restored interrupted removal: {os.path.basename(path)}")
        else:
            os.unlink(tomb)

    def _read_artifact(self, path: str) -> Template:
        with open(path, "rb") as f:
            blob = f.read()
        return self._hydrate(crypto.unseal(blob, self._key))

    # ──────────────────────────────────────────
    # TEMPLATES
    # ──────────────────────────────────────────
    def has(self, name: str) -> bool:
        with self._lock:
            return name_key(name) in self._templates

    def get(self, name: str) -> Optional[Template]:
        with self._lock:
            return self._templates.get(name_key(name))

    def put(self, name: str, data: bytes) -> Template:
        """Persist *data* for *name*, replacing any previous template wholesale."""
        key = name_key(name)
        template = self._hydrate(bytes(data))
        with self._lock:
            names = dict(self._names)
            names[key] = name.strip()
            self._write_index(names, self._bindings)
            try:
                _atomic_write(self._artifact_path(key), crypto.seal(template.data, self._key))
            except OSError:
                # No artifact was written; drop the new index entry again
                self._write_index(self._names, self._bindings)
                raise
            self._names = names
            self._templates[key] = template
        logger.info(f"Template stored for '{name.strip()}' ({len(template.data)} bytes)")
        return template

    def remove(self, name: str) -> bool:
        """
        Delete the artifact, the in-memory template and the binding together.

        The artifact is moved to a tombstone first and the index rewritten;
        memory is only touched once both durable steps succeeded.  On failure
        the artifact is restored and the error propagates.
        """
        key = name_key(name)
        with self._lock:
            path = self._artifact_path(key)
            tomb = path + TOMBSTONE_EXT
            on_disk = os.path.exists(path)
            if key not in self._templates and key not in self._bindings and not on_disk:
                return False

            if on_disk:
                os.replace(path, tomb)
            names = {k: v for k, v in self._names.items() if k != key}
            bindings = {k: v for k, v in self._bindings.items() if k != key}
            try:
                self._write_index(names, bindings)
            except OSError:
                if on_disk:
                    os.replace(tomb, path)
                raise

            if on_disk:
                try:
                    os.unlink(tomb)
                except OSError as e:
                    # Index no longer owns it; load() deletes it next start
                    logger.warning(f"Could not delete tombstone {tomb}: {e}")
            self._names = names
            self._bindings = bindings
            self._templates.pop(key, None)
        logger.info(f"Template and binding removed for '{name.strip()}'")
        return True

    def get_bytes_for_transmission(self, name: str) -> Optional[bytes]:
        """Template bytes from memory, falling back to the durable artifact."""
        key = name_key(name)
        with self._lock:
            template = self._templates.get(key)
            if template is not None:
                return template.data
            path = self._artifact_path(key)
            if not os.path.exists(path):
                return None
            with open(path, "rb") as f:
                return crypto.unseal(f.read(), self._key)

    def names(self) -> List[str]:
        with self._lock:
            return sorted((self._names.get(k, k) for k in self._templates), key=str.casefold)

    def items(self) -> List[Tuple[str, Template]]:
        """Snapshot of (display name, template) pairs."""
        with self._lock:
            return [(self._names.get(k, k), t) for k, t in self._templates.items()]

    def __len__(self):
        with self._lock:
            return len(self._templates)

    # ──────────────────────────────────────────
    # ENROLLMENT BINDINGS
    # ──────────────────────────────────────────
    def get_binding(self, name: str) -> Optional[int]:
        with self._lock:
            return self._bindings.get(name_key(name))

    def set_binding(self, name: str, enrollment_id: int):
        """Bind *name* to a remote identity, replacing any previous binding."""
        if isinstance(enrollment_id, bool) or not isinstance(enrollment_id, int):
            raise TypeError(f"enrollment id must be an int, got {enrollment_id!r}")
        key = name_key(name)
        with self._lock:
            names = dict(self._names)
            names.setdefault(key, name.strip())
            bindings = dict(self._bindings)
            bindings[key] = enrollment_id
            self._write_index(names, bindings)
            self._names, self._bindings = names, bindings
        logger.info(f"Binding '{name.strip()}' → enrollment {enrollment_id}")

    def adopt_binding(self, name: str, enrollment_id: int) -> int:
        """Set the binding only if none exists; return the binding in effect."""
        with self._lock:
            current = self.get_binding(name)
            if current is not None:
                return current
            self.set_binding(name, enrollment_id)
            return enrollment_id
