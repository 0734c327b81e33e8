"""
The GatewayReconciler manages an individual reconcile of a MeshGateway. It
fetches the parent, branches on deletion, runs the child pipeline and turns the
outcome into a result the delivery mechanism can act on.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import base64
import datetime
import logging
import uuid

# First Party
import aconfig
import alog

# Local
from . import config, constants
from .builder import BuilderFactory
from .class_config import GatewayClassConfigResolver
from .exceptions import MeshGateError, PipelineStepError, assert_store
from .log_format import MeshGateJsonFormatter, set_reconcile_context
from .managed_object import ManagedObject, ParentIdentity
from .pipeline import ChildPipeline
from .store import DryRunStore, OpenshiftStore, StoreBase

log = alog.use_channel("RECON")


## Data models #################################################################


class ReconcileOutcome(Enum):
    """Tri-state outcome of a reconcile"""

    # Converged, or nothing to do
    DONE = "done"
    # Failed in a way a later reconcile is expected to fix
    RETRY = "retry"
    # Failed in a way that needs a human (e.g. a child owned by someone else)
    FATAL = "fatal"


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation"""

    outcome: ReconcileOutcome
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # The exception that ended the reconcile, if any
    exception: Optional[Exception] = None

    @property
    def requeue(self) -> bool:
        return self.outcome is ReconcileOutcome.RETRY


## GatewayReconciler ###########################################################


class GatewayReconciler:
    """This class runs reconciles of MeshGateway resources. The only state it
    holds is the store, which is fixed at construction, so a single instance
    may serve different parents concurrently.
    """

    def __init__(
        self,
        builder_factory: BuilderFactory,
        store: Optional[StoreBase] = None,
    ):
        """
        Args:
            builder_factory:  BuilderFactory
                Callable taking (parent, class_config) and returning the
                GatewayBuilder for one reconcile
            store:  Optional[StoreBase]
                Store to use. If not given, a new live store is created for
                each reconcile, or one in-memory store is shared by all
                reconciles in dry run mode.
        """
        self.builder_factory = builder_factory
        if store is None and config.dry_run:
            log.debug("Using DryRunStore")
            store = DryRunStore()
        self.store = store

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(self, namespace: str, name: str) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. Errors are raised to
        the caller. Use safe_reconcile for a call that always returns a result.

        Args:
            namespace:  str
                Namespace of the MeshGateway
            name:  str
                Name of the MeshGateway

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        reconcile_id = self.generate_id()
        store = self.setup_store()

        success, content = store.get_object_current_state(
            kind=constants.MESH_GATEWAY_KIND,
            name=name,
            namespace=namespace,
            api_version=constants.MESH_API_VERSION,
        )
        assert_store(
            success,
            f"Failed to fetch {constants.MESH_GATEWAY_KIND} {namespace}/{name}",
        )
        if content is None:
            log.info("MeshGateway %s/%s not found. Nothing to do", namespace, name)
            return ReconciliationResult(outcome=ReconcileOutcome.DONE)

        parent = aconfig.Config(content, override_env_vars=False)
        self.configure_logging(parent, reconcile_id)
        try:
            if ManagedObject(content).deletion_requested:
                log.info("Deletion requested for %s/%s", namespace, name)
                self.on_delete(store, parent)
            else:
                self.on_create_update(store, parent)
        finally:
            set_reconcile_context()

        return ReconciliationResult(outcome=ReconcileOutcome.DONE)

    def safe_reconcile(self, namespace: str, name: str) -> ReconciliationResult:
        """Call reconcile but catch any errors thrown and map them to an
        outcome. Expected errors are retried, fatal ones are not.
        """
        try:
            return self.reconcile(namespace, name)

        except MeshGateError as exc:
            step = exc.step if isinstance(exc, PipelineStepError) else None
            if exc.is_fatal_error:
                log.error(
                    "Reconcile of %s/%s failed at step [%s] and will not be retried: %s",
                    namespace,
                    name,
                    step,
                    exc,
                )
                return ReconciliationResult(
                    outcome=ReconcileOutcome.FATAL, exception=exc
                )
            log.warning(
                "Reconcile of %s/%s failed at step [%s]. Requeuing: %s",
                namespace,
                name,
                step,
                exc,
            )
            return ReconciliationResult(outcome=ReconcileOutcome.RETRY, exception=exc)

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            return ReconciliationResult(outcome=ReconcileOutcome.RETRY, exception=exc)

    ## Hooks ###################################################################

    def on_create_update(self, store: StoreBase, parent: aconfig.Config):
        """Create or update every child of the parent in dependency order"""
        class_config = GatewayClassConfigResolver(store).resolve(parent)
        builder = self.builder_factory(parent, class_config)
        ChildPipeline(
            store=store,
            parent=ParentIdentity.from_manifest(parent),
            builder=builder,
            class_config=class_config,
        ).run()

    def on_delete(self, store: StoreBase, parent: aconfig.Config):
        """Clean up side effects of on_create_update that live outside the
        cluster. Every child carries an owner reference to the parent, so the
        platform garbage collector removes the children themselves.
        """

    ## Reconciliation Stages ###################################################

    def setup_store(self) -> StoreBase:
        """Get the store for a reconcile"""
        if self.store is not None:
            return self.store

        log.debug("Using OpenshiftStore")
        return OpenshiftStore()

    @classmethod
    def configure_logging(cls, parent: aconfig.Config, reconciliation_id: str):
        """Configure the logging for a given reconcile, honoring the log
        annotations on the parent. Levels and filters apply to the whole
        process. The parent identity and reconciliation id only label lines
        logged from the calling thread.

        Args:
            parent:  aconfig.Config
                The resource to get annotation overrides from
            reconciliation_id:  str
                The unique id for the reconciliation
        """
        annotations = parent.get("metadata", {}).get("annotations") or {}
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_thread_id = annotations.get(
            constants.LOG_THREAD_ID_NAME, str(config.log_thread_id)
        )

        # Convert boolean args
        log_json = (log_json or "").lower() == "true"
        log_thread_id = (log_thread_id or "").lower() == "true"

        # Keep the existing handler so output keeps going wherever it was
        # already configured to go
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        set_reconcile_context(parent, reconciliation_id)
        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter=MeshGateJsonFormatter()
            if log_json
            else "pretty",
            thread_id=log_thread_id,
            handler_generator=handler_generator,
        )

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id
