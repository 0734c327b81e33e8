"""
The DryRunStore implements the store interface but does not actually interact
with the cluster and instead holds the state of the cluster in a local map.
"""

# Standard
from datetime import datetime
from threading import RLock
from typing import List, Optional
import copy
import random
import uuid

# First Party
import alog

# Local
from .base import StoreBase

log = alog.use_channel("DRY-RUN")

# Metadata fields that the store owns and that never count as a change
_SERVER_FIELDS = ["resourceVersion", "uid", "creationTimestamp"]


class DryRunStore(StoreBase):
    """
    Store which doesn't actually store anything in a cluster!
    """

    def __init__(self, resources: Optional[List[dict]] = None):
        """Construct with an optional list of objects that already exist"""
        self._cluster_content = {}
        self._lock = RLock()

        # Ordered record of successful writes as (verb, kind, namespace, name)
        self.writes = []

        for resource in resources or []:
            self._put(copy.deepcopy(resource))

    ## Interface ###############################################################

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with self._lock:
            return True, copy.deepcopy(self._lookup(kind, name, namespace, api_version))

    def create_or_update(self, resource_definition, exists):
        verb = "update" if exists else "create"
        kind = resource_definition.get("kind")
        metadata = resource_definition.get("metadata", {})
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        log.info("DRY RUN %s [%s/%s] in [%s]", verb, kind, name, namespace)

        with self._lock:
            current = self._lookup(
                kind, name, namespace, resource_definition.get("apiVersion")
            )

            # Mirror the API server: create conflicts with an existing object
            # and update of a missing object is not found
            if exists and current is None:
                log.warning("Cannot update [%s/%s]: not found", kind, name)
                return False, False
            if not exists and current is not None:
                log.warning("Cannot create [%s/%s]: already exists", kind, name)
                return False, False

            changed = _strip_server_fields(current) != _strip_server_fields(
                resource_definition
            )
            self._put(copy.deepcopy(resource_definition), current, changed)
            self.writes.append((verb, kind, namespace, name))
        return True, changed

    ## Implementation Details ##################################################

    def _lookup(self, kind, name, namespace, api_version) -> Optional[dict]:
        """Find the single stored object matching the identifiers"""
        matches = []
        kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
        for api_ver, entries in kind_entries.items():
            if name in entries and (api_ver == api_version or api_version is None):
                matches.append(entries[name])
        log.debug3(
            "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
        )
        return matches[0] if len(matches) == 1 else None

    def _put(
        self,
        resource: dict,
        current: Optional[dict] = None,
        changed: bool = True,
    ):
        """Insert the resource, keeping server-owned metadata from the current
        version of the object if there is one. The resourceVersion only moves
        when the content changed.
        """
        current_metadata = (current or {}).get("metadata", {})
        metadata = resource.setdefault("metadata", {})
        metadata["uid"] = current_metadata.get(
            "uid", metadata.get("uid", str(uuid.uuid4()))
        )
        metadata["creationTimestamp"] = current_metadata.get(
            "creationTimestamp",
            metadata.get("creationTimestamp", datetime.now().isoformat()),
        )
        if changed or "resourceVersion" not in current_metadata:
            metadata["resourceVersion"] = str(random.randint(1, 100000)).zfill(6)
        else:
            metadata["resourceVersion"] = current_metadata["resourceVersion"]
        with self._lock:
            (
                self._cluster_content.setdefault(metadata.get("namespace"), {})
                .setdefault(resource.get("kind"), {})
                .setdefault(resource.get("apiVersion"), {})
            )[metadata.get("name")] = resource


def _strip_server_fields(manifest: Optional[dict]) -> Optional[dict]:
    """Copy of the manifest without the fields the store assigns"""
    if manifest is None:
        return None
    manifest = copy.deepcopy(manifest)
    for field in _SERVER_FIELDS:
        manifest.get("metadata", {}).pop(field, None)
    return manifest
