"""
The child pipeline writes every child of a MeshGateway in dependency order.
Each write goes through the ownership-safe upsert so that nothing we did not
create is ever modified.
"""

# Standard
from typing import Dict, Optional

# First Party
import aconfig
import alog

# Local
from .builder import GatewayBuilder
from .child_kind import CHILD_KIND_ORDER, ChildKind
from .exceptions import PipelineStepError, assert_owned, assert_store
from .managed_object import ManagedObject, ParentIdentity
from .merge import MergeStrategy, deployment_merger, merge_service, replace
from .ownership import is_new_or_owned, set_owner_reference
from .store import StoreBase

log = alog.use_channel("PIPE")


## Upsert ######################################################################


def upsert(
    store: StoreBase,
    parent: ParentIdentity,
    kind: ChildKind,
    desired: dict,
    merge_strategy: MergeStrategy = replace,
) -> bool:
    """Create or update a single child if it is new or already ours

    The steps are strictly ordered: stamp the owner reference, read the
    current object, check ownership, merge, then write. Nothing is written if
    the read fails or the existing object is not owned by the parent.

    Args:
        store:  StoreBase
            The store to read from and write to
        parent:  ParentIdentity
            Identity of the MeshGateway being reconciled
        kind:  ChildKind
            The kind of child being written
        desired:  dict
            The freshly built manifest. It is modified in place.
        merge_strategy:  MergeStrategy
            How to combine the observed object with the desired manifest

    Returns:
        changed:  bool
            Whether or not the write resulted in changes

    Raises:
        StoreError: If the read or the write fails
        NotOwnedError: If an object exists at the key and is not owned by the
            parent
        BuildError: If the desired manifest has no name or another controller
            reference
    """
    set_owner_reference(parent, desired)
    key = ManagedObject(desired).key

    success, observed = store.get_object_current_state(
        kind=kind.kind,
        name=key.name,
        namespace=key.namespace,
        api_version=kind.api_version,
    )
    assert_store(success, f"Failed to fetch current state of {kind}/{key}")

    assert_owned(
        is_new_or_owned(parent, observed),
        f"existing {kind} {key} not owned by {parent.namespace}/{parent.name}",
    )

    final = merge_strategy(observed, desired)

    exists = observed is not None
    success, changed = store.create_or_update(final, exists=exists)
    assert_store(
        success, f"Failed to {'update' if exists else 'create'} {kind}/{key}"
    )
    log.debug2("Wrote %s/%s. Changed? %s", kind, key, changed)
    return changed


## Pipeline ####################################################################


class ChildPipeline:
    """Runs the upsert for each ChildKind in the fixed order. The first failing
    step stops the run. Steps that already succeeded stay applied; a retried
    reconcile converges them again.
    """

    def __init__(
        self,
        store: StoreBase,
        parent: ParentIdentity,
        builder: GatewayBuilder,
        class_config: Optional[aconfig.Config] = None,
    ):
        self.store = store
        self.parent = parent
        self.builder = builder
        self.class_config = (
            class_config
            if class_config is not None
            else aconfig.Config({}, override_env_vars=False)
        )

    def merge_strategy(self, kind: ChildKind) -> MergeStrategy:
        """Pick the merge strategy for a kind"""
        if kind is ChildKind.SERVICE:
            return merge_service
        if kind is ChildKind.DEPLOYMENT:
            return deployment_merger(self.builder.merge_deployments, self.class_config)
        return replace

    def run(self) -> Dict[ChildKind, bool]:
        """Write every child

        Returns:
            changes:  Dict[ChildKind, bool]
                Whether each child changed, in the order they were written

        Raises:
            PipelineStepError: Wrapping the error of the first step that failed
        """
        changes = {}
        for kind in CHILD_KIND_ORDER:
            log.debug("Running step [%s]", kind)
            try:
                # Building happens inside the step so that a BuildError stops
                # the pipeline before anything of this kind is written
                desired = self.builder.build(kind)
                changes[kind] = upsert(
                    self.store,
                    self.parent,
                    kind,
                    desired,
                    self.merge_strategy(kind),
                )
            except Exception as err:  # pylint: disable=broad-except
                log.debug("Step [%s] failed: %s", kind, err)
                raise PipelineStepError(kind, err) from err
        log.debug("Changes: %s", {str(kind): chg for kind, chg in changes.items()})
        return changes
