"""
The store is the abstraction in charge of reading and writing objects in the
cluster on behalf of the reconciler
"""

# Local
from .base import StoreBase
from .dry_run_store import DryRunStore
from .openshift_store import OpenshiftStore
