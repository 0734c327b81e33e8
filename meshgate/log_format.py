"""
Custom logging formats that carry the identity of the reconcile in every line
"""

# Standard
import threading

# First Party
from alog import AlogJsonFormatter

# Identity of the reconcile running on each thread
_reconcile_context = threading.local()


def set_reconcile_context(manifest=None, reconciliation_id=None):
    """Attach the parent manifest and reconcile id to every line logged from
    the calling thread. Call with no arguments to clear it.
    """
    _reconcile_context.manifest = manifest
    _reconcile_context.reconciliation_id = reconciliation_id


class MeshGateJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter to add the identifiers
    of the MeshGateway being reconciled and the reconciliationId. They are read
    from the thread that emitted the record, so one formatter serves any number
    of concurrent reconciles.
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "parentName",
        "parentNamespace",
        "parentUid",
        "reconciliationId",
    ]

    def format(self, record):
        reconciliation_id = getattr(_reconcile_context, "reconciliation_id", None)
        if reconciliation_id:
            record.reconciliationId = reconciliation_id

        manifest = getattr(_reconcile_context, "manifest", None)
        if manifest:
            metadata = manifest.get("metadata", {})
            record.parentName = metadata.get("name")
            record.parentNamespace = metadata.get("namespace")
            record.parentUid = metadata.get("uid")

        return super().format(record)
