"""Versioned manifest storage on an object store, with writer and compactor fencing."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from slatecore.manifest import CoreDbState, Manifest
from slatecore.manifest_codec import ManifestCodec

_log = logging.getLogger(__name__)

_MANIFEST_SUFFIX = "manifest"


class ManifestStoreError(Exception):
    """Base class for manifest store failures."""


class ManifestVersionExistsError(ManifestStoreError):
    """Another writer already stored a manifest with the requested id."""


class FencedError(ManifestStoreError):
    """A newer writer or compactor has taken over; this one must stop."""


class InvalidDeletionError(ManifestStoreError):
    """The manifest cannot be deleted because it is the active one."""


class ManifestMissingError(ManifestStoreError):
    """No manifest exists where one is required."""


class InvalidDbStateError(ManifestStoreError):
    """The stored state is not what the database expects."""


@dataclass(frozen=True)
class ObjectMeta:
    """Metadata of an object held in an object store."""

    location: str
    last_modified: datetime
    size: int


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p.strip("/"))


class InMemoryObjectStore:
    """A thread-safe object store held in memory."""

    def __init__(self) -> None:
        self._objects: dict[str, tuple[bytes, datetime]] = {}
        self._lock = threading.Lock()

    def put_if_not_exists(self, path: str, data: bytes) -> None:
        """Store ``data`` at ``path``; raise FileExistsError if the path is taken."""
        path = _join(path)
        with self._lock:
            if path in self._objects:
                raise FileExistsError(path)
            self._objects[path] = (bytes(data), datetime.now(timezone.utc))

    def get(self, path: str) -> bytes:
        """Return the object at ``path``; raise FileNotFoundError if absent."""
        path = _join(path)
        with self._lock:
            try:
                return self._objects[path][0]
            except KeyError:
                raise FileNotFoundError(path) from None

    def delete(self, path: str) -> None:
        """Remove the object at ``path``; raise FileNotFoundError if absent."""
        path = _join(path)
        with self._lock:
            if self._objects.pop(path, None) is None:
                raise FileNotFoundError(path)

    def list(self, prefix: str | None = None) -> Iterator[ObjectMeta]:
        """Yield metadata of objects under the directory ``prefix``."""
        prefix = _join(prefix or "")
        with self._lock:
            snapshot = sorted(self._objects.items())
        for location, (data, modified) in snapshot:
            if not prefix or location.startswith(prefix + "/"):
                yield ObjectMeta(location, modified, len(data))


@dataclass(frozen=True)
class ManifestFileMetadata:
    """A manifest file found in the store."""

    id: int
    location: str
    last_modified: datetime
    size: int


class ManifestStore:
    """Reads and writes numbered manifest files under ``<root>/manifest``."""

    def __init__(self, root_path: str, object_store: InMemoryObjectStore) -> None:
        self._dir = _join(root_path, "manifest")
        self._object_store = object_store
        self._codec = ManifestCodec()

    def _manifest_path(self, id: int) -> str:
        return _join(self._dir, f"{id:020}.{_MANIFEST_SUFFIX}")

    def write_manifest(self, id: int, manifest: Manifest) -> None:
        """Store ``manifest`` as version ``id``, failing if that version exists."""
        try:
            self._object_store.put_if_not_exists(
                self._manifest_path(id), self._codec.encode(manifest)
            )
        except FileExistsError:
            raise ManifestVersionExistsError(f"manifest {id} already exists") from None

    def delete_manifest(self, id: int) -> None:
        """Delete manifest ``id``; the active manifest cannot be deleted."""
        latest = self.read_latest_manifest()
        if latest is None:
            raise ManifestMissingError("no manifest found")
        if latest[0] == id:
            raise InvalidDeletionError(f"manifest {id} is the active manifest")
        self._object_store.delete(self._manifest_path(id))

    @staticmethod
    def _parse_id(location: str) -> int:
        filename = location.rsplit("/", 1)[-1]
        stem, dot, ext = filename.rpartition(".")
        if not dot or ext != _MANIFEST_SUFFIX:
            raise InvalidDbStateError(f"not a manifest file: {location}")
        try:
            return int(filename.split(".", 1)[0])
        except ValueError:
            raise InvalidDbStateError(f"not a manifest file: {location}") from None

    def list_manifests(
        self, start: int | None = None, end: int | None = None
    ) -> list[ManifestFileMetadata]:
        """Manifests with ``start <= id < end`` (None is unbounded), ordered by id.

        The last element of an unbounded listing is the current manifest.
        """
        manifests = []
        for meta in self._object_store.list(self._dir):
            try:
                id = self._parse_id(meta.location)
            except InvalidDbStateError:
                _log.warning("Unknown file in manifest directory: %s", meta.location)
                continue
            if (start is None or id >= start) and (end is None or id < end):
                manifests.append(
                    ManifestFileMetadata(id, meta.location, meta.last_modified, meta.size)
                )
        manifests.sort(key=lambda m: m.id)
        return manifests

    def read_latest_manifest(self) -> tuple[int, Manifest] | None:
        """Return (id, manifest) of the newest manifest, or None if there is none."""
        manifests = self.list_manifests()
        if not manifests:
            return None
        return self.read_manifest(manifests[-1].id)

    def read_manifest(self, id: int) -> tuple[int, Manifest] | None:
        """Return (id, manifest) for version ``id``, or None if it does not exist."""
        try:
            data = self._object_store.get(self._manifest_path(id))
        except FileNotFoundError:
            return None
        return id, self._codec.decode(data)


class StoredManifest:
    """The latest known manifest and its id, updated with conditional writes."""

    def __init__(self, id: int, manifest: Manifest, store: ManifestStore) -> None:
        self.id = id
        self.manifest = manifest
        self._store = store

    @classmethod
    def init_new_db(cls, store: ManifestStore, core: CoreDbState) -> StoredManifest:
        """Write the first manifest of a new database."""
        manifest = Manifest(copy.deepcopy(core), writer_epoch=0, compactor_epoch=0)
        store.write_manifest(1, manifest)
        return cls(1, manifest, store)

    @classmethod
    def load(cls, store: ManifestStore) -> StoredManifest | None:
        """Load the current manifest, or None if no database exists in the store."""
        latest = store.read_latest_manifest()
        if latest is None:
            return None
        id, manifest = latest
        return cls(id, manifest, store)

    def db_state(self) -> CoreDbState:
        return self.manifest.core

    def refresh(self) -> CoreDbState:
        """Reload the latest manifest from the store."""
        latest = self._store.read_latest_manifest()
        if latest is None:
            raise InvalidDbStateError("manifest disappeared from the store")
        self.id, self.manifest = latest
        return self.manifest.core

    def update_db_state(self, core: CoreDbState) -> None:
        """Write ``core`` as the next manifest version, keeping the epochs."""
        self.update_manifest(replace(self.manifest, core=copy.deepcopy(core)))

    def update_manifest(self, manifest: Manifest) -> None:
        """Write ``manifest`` as the next version; fails if another writer got there first."""
        new_id = self.id + 1
        self._store.write_manifest(new_id, manifest)
        self.manifest = manifest
        self.id = new_id


class FenceableManifest:
    """A stored manifest that claims an epoch and detects when it has been fenced."""

    def __init__(self, stored_manifest: StoredManifest, epoch_field: str) -> None:
        self._stored = stored_manifest
        self._epoch_field = epoch_field
        manifest = stored_manifest.manifest
        self._local_epoch = getattr(manifest, epoch_field) + 1
        stored_manifest.update_manifest(
            replace(manifest, **{epoch_field: self._local_epoch})
        )

    @classmethod
    def init_writer(cls, stored_manifest: StoredManifest) -> FenceableManifest:
        return cls(stored_manifest, "writer_epoch")

    @classmethod
    def init_compactor(cls, stored_manifest: StoredManifest) -> FenceableManifest:
        return cls(stored_manifest, "compactor_epoch")

    def _check_epoch(self) -> None:
        stored_epoch = getattr(self._stored.manifest, self._epoch_field)
        if self._local_epoch < stored_epoch:
            raise FencedError("a newer epoch has been claimed")
        if self._local_epoch > stored_epoch:
            raise RuntimeError("the stored epoch is lower than the local epoch")

    def db_state(self) -> CoreDbState:
        self._check_epoch()
        return self._stored.db_state()

    def refresh(self) -> CoreDbState:
        self._stored.refresh()
        return self.db_state()

    def update_db_state(self, db_state: CoreDbState) -> None:
        self._check_epoch()
        self._stored.update_db_state(db_state)


def apply_db_state_update(
    manifest: StoredManifest, mutator: Callable[[StoredManifest], CoreDbState]
) -> None:
    """Apply ``mutator`` and write the result, refreshing and retrying on version conflicts."""
    while True:
        state = mutator(manifest)
        try:
            manifest.update_db_state(state)
            return
        except ManifestVersionExistsError:
            manifest.refresh()