"""
Package exports
"""

# Local
from . import config, reconcile
from .builder import GatewayBuilder
from .child_kind import CHILD_KIND_ORDER, ChildKind
from .class_config import GatewayClassConfigResolver
from .exceptions import (
    BuildError,
    NotOwnedError,
    PipelineStepError,
    StoreError,
    assert_build,
    assert_config,
)
from .managed_object import ObjectKey, ParentIdentity
from .pipeline import ChildPipeline, upsert
from .reconcile import GatewayReconciler, ReconcileOutcome, ReconciliationResult
from .store import DryRunStore, OpenshiftStore, StoreBase
