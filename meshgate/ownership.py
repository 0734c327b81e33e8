"""
This module holds the ownership rules for children of a MeshGateway: how an
owner reference is stamped onto every manifest we write and the guard that
decides whether an existing object may be touched at all
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from .exceptions import assert_build
from .managed_object import ManagedObject, ParentIdentity

log = alog.use_channel("OWNR")


def make_owner_reference(parent: ParentIdentity) -> dict:
    """Make the `metadata.ownerReferences` entry for the given parent

    Args:
        parent:  ParentIdentity
            Identity of the owning MeshGateway

    Returns:
        owner_reference:  dict
            The reference dict. It is marked as the controller reference so
            that the platform garbage collector removes the child when the
            parent goes away.
    """
    return {
        "apiVersion": parent.api_version,
        "kind": parent.kind,
        "name": parent.name,
        "uid": parent.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def references_parent(owner_reference: dict, parent: ParentIdentity) -> bool:
    """Both uid and name must match. A recreated parent with the same name has a
    new uid and does not own the old parent's children.
    """
    return (
        owner_reference.get("uid") == parent.uid
        and owner_reference.get("name") == parent.name
    )


def set_owner_reference(parent: ParentIdentity, child_obj: dict) -> dict:
    """Stamp the parent's owner reference onto the child manifest in place.
    References to other owners that the builder put on the manifest are
    preserved, and an existing reference to this parent is replaced rather than
    duplicated.

    Raises:
        BuildError: If the manifest already names another controller. An
            object can only have one and every write of it would be rejected.
    """
    metadata = child_obj.setdefault("metadata", {})
    owner_refs = [
        ref
        for ref in metadata.get("ownerReferences") or []
        if ref.get("uid") != parent.uid
    ]
    for ref in owner_refs:
        assert_build(
            not ref.get("controller"),
            f"{ManagedObject(child_obj)} is already controlled by "
            f"{ref.get('kind')}/{ref.get('name')}",
        )
    owner_refs.append(make_owner_reference(parent))
    log.debug3("Final owner refs: %s", owner_refs)
    metadata["ownerReferences"] = owner_refs
    return child_obj


def is_new_or_owned(parent: ParentIdentity, observed: Optional[dict]) -> bool:
    """Decide whether an upsert of a child may proceed

    An absent object can always be created. A present object can only be
    modified if one of its ownerReferences points at this parent.

    Args:
        parent:  ParentIdentity
            Identity of the MeshGateway being reconciled
        observed:  Optional[dict]
            The object currently stored at the child's key, or None

    Returns:
        allowed:  bool
            True if the write may go ahead
    """
    if observed is None:
        log.debug2("No existing object. Safe to create")
        return True

    observed_obj = ManagedObject(observed)
    log.debug3("Current owner refs: %s", observed_obj.owner_references)
    owned = any(
        references_parent(ref, parent) for ref in observed_obj.owner_references
    )
    if not owned:
        log.debug(
            "Existing %s is not owned by %s/%s",
            observed_obj,
            parent.namespace,
            parent.name,
        )
    return owned
