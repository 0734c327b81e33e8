"""
Helper structs to represent the objects the reconciler reads and writes
"""

# Standard
from dataclasses import dataclass
from typing import List, Optional

# Local
from .exceptions import assert_build, assert_config


@dataclass(frozen=True)
class ObjectKey:
    """The lookup key of a namespaced object"""

    namespace: Optional[str]
    name: str

    def __str__(self):
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ParentIdentity:
    """Identity of the parent resource being reconciled. The uid and name are
    the authorization token checked against a child's ownerReferences. The
    apiVersion and kind are only needed to write a complete reference.
    """

    namespace: str
    name: str
    uid: str
    api_version: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def from_manifest(cls, manifest: dict) -> "ParentIdentity":
        """Raises ConfigError if the parent can't be identified. Without a
        name and uid no child could ever be proven to be ours.
        """
        metadata = manifest.get("metadata") or {}
        assert_config(metadata.get("name"), "Got parent without 'metadata.name'")
        assert_config(metadata.get("uid"), "Got parent without 'metadata.uid'")
        return cls(
            namespace=metadata.get("namespace"),
            name=metadata["name"],
            uid=metadata["uid"],
            api_version=manifest.get("apiVersion"),
            kind=manifest.get("kind"),
        )


class ManagedObject:
    """Read-only view over a manifest dict with accessors for the fields the
    reconciler reasons about
    """

    def __init__(self, definition: dict):
        self.definition = definition
        self.kind = definition.get("kind")
        self.metadata = definition.get("metadata") or {}
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")

    @property
    def key(self) -> ObjectKey:
        assert_build(self.name is not None, f"Got {self.kind} without 'metadata.name'")
        return ObjectKey(self.namespace, self.name)

    @property
    def owner_references(self) -> List[dict]:
        return self.metadata.get("ownerReferences") or []

    @property
    def annotations(self) -> dict:
        return self.metadata.get("annotations") or {}

    @property
    def deletion_requested(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))

    def __str__(self):
        return f"{self.kind} {self.namespace}/{self.name}"
