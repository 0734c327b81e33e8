"""Tests for the GatewayReconciler"""

# Standard
from datetime import timedelta
from threading import Barrier, Thread
from unittest import mock
import json
import logging

# Third Party
import pytest

# First Party
import aconfig
import alog

# Local
from meshgate import constants
from meshgate.child_kind import CHILD_KIND_ORDER, ChildKind
from meshgate.exceptions import (
    BuildError,
    ConfigError,
    NotOwnedError,
    PipelineStepError,
    StoreError,
)
from meshgate.log_format import MeshGateJsonFormatter, set_reconcile_context
from meshgate.reconcile import (
    GatewayReconciler,
    ReconcileOutcome,
    ReconciliationResult,
    RequeueParams,
)
from meshgate.store import DryRunStore, OpenshiftStore
from meshgate.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_INSTANCE_UID,
    TEST_NAMESPACE,
    builder_factory,
    fail_for_kinds,
    library_config,
    setup_class_config,
    setup_parent,
    setup_store,
)

log = alog.use_channel("TEST")

## Helpers #####################################################################


class AlogConfigureMock:
    def __init__(self):
        self.kwargs = None

    def __call__(self, **kwargs):
        self.kwargs = kwargs


def parent_fetch_fails(*_, **kwargs):
    return kwargs.get("kind") == constants.MESH_GATEWAY_KIND


def run(store, **kwargs):
    reconciler = GatewayReconciler(builder_factory(**kwargs), store=store)
    return reconciler.safe_reconcile(TEST_NAMESPACE, TEST_INSTANCE_NAME)


## Data models #################################################################


def test_requeue_params_default():
    """Make sure the requeue delay comes from the library config"""
    with library_config(requeue_after_seconds=15):
        assert RequeueParams().requeue_after == timedelta(seconds=15)


def test_result_requeue():
    """Make sure only a RETRY outcome asks for a requeue"""
    assert ReconciliationResult(outcome=ReconcileOutcome.RETRY).requeue
    assert not ReconciliationResult(outcome=ReconcileOutcome.DONE).requeue
    assert not ReconciliationResult(outcome=ReconcileOutcome.FATAL).requeue


## reconcile ###################################################################


def test_reconcile_creates_all_children():
    """Make sure a reconcile of a fresh parent creates every child owned by the
    parent
    """
    store = setup_store()
    result = run(store)
    assert result.outcome is ReconcileOutcome.DONE
    assert result.exception is None
    assert not result.requeue
    assert [kind for _, kind, _, _ in store.writes] == [
        kind.kind for kind in CHILD_KIND_ORDER
    ]
    for kind in CHILD_KIND_ORDER:
        refs = store.get_child(kind)["metadata"]["ownerReferences"]
        assert [ref["uid"] for ref in refs] == [TEST_INSTANCE_UID]


def test_reconcile_parent_absent():
    """Make sure a missing parent is DONE without any writes"""
    store = setup_store(parent=setup_parent(name="somebody-else"))
    result = run(store)
    assert result.outcome is ReconcileOutcome.DONE
    store.create_or_update.assert_not_called()


def test_reconcile_parent_fetch_failure():
    """Make sure a failure to fetch the parent is retried by safe_reconcile and
    raised by reconcile
    """
    store = setup_store(get_state_fail=parent_fetch_fails)
    result = run(store)
    assert result.outcome is ReconcileOutcome.RETRY
    assert isinstance(result.exception, StoreError)

    reconciler = GatewayReconciler(builder_factory(), store=store)
    with pytest.raises(StoreError):
        reconciler.reconcile(TEST_NAMESPACE, TEST_INSTANCE_NAME)
    store.create_or_update.assert_not_called()


def test_reconcile_deletion_is_noop():
    """Make sure a parent marked for deletion writes no children"""
    factory = mock.Mock(side_effect=builder_factory())
    store = setup_store(parent=setup_parent(deleted=True))
    result = GatewayReconciler(factory, store=store).safe_reconcile(
        TEST_NAMESPACE, TEST_INSTANCE_NAME
    )
    assert result.outcome is ReconcileOutcome.DONE
    factory.assert_not_called()
    store.create_or_update.assert_not_called()


def test_reconcile_not_owned_is_fatal():
    """Make sure a child owned by someone else ends the reconcile as FATAL and
    names the step
    """
    manual = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": TEST_INSTANCE_NAME, "namespace": TEST_NAMESPACE},
        "spec": {"ports": [{"port": 9999, "protocol": "TCP"}]},
    }
    store = setup_store(resources=[manual])
    result = run(store)
    assert result.outcome is ReconcileOutcome.FATAL
    assert not result.requeue
    assert isinstance(result.exception, PipelineStepError)
    assert result.exception.step is ChildKind.SERVICE
    assert isinstance(result.exception.cause, NotOwnedError)
    assert store.get_child(ChildKind.SERVICE)["spec"] == manual["spec"]
    assert store.get_child(ChildKind.ROLE_BINDING) is not None
    assert store.get_child(ChildKind.DEPLOYMENT) is None


def test_reconcile_store_error_is_retried():
    """Make sure a failed write ends the reconcile as RETRY"""
    store = setup_store(write_fail=fail_for_kinds(ChildKind.SERVICE))
    result = run(store)
    assert result.outcome is ReconcileOutcome.RETRY
    assert result.requeue
    assert result.exception.step is ChildKind.SERVICE
    assert isinstance(result.exception.cause, StoreError)
    assert store.get_child(ChildKind.DEPLOYMENT) is None


def test_reconcile_build_error_is_fatal():
    """Make sure a BuildError ends the reconcile as FATAL"""
    store = setup_store()
    result = run(store, build_fail_kinds=[ChildKind.ROLE])
    assert result.outcome is ReconcileOutcome.FATAL
    assert isinstance(result.exception.cause, BuildError)
    assert [kind for _, kind, _, _ in store.writes] == ["ServiceAccount"]


def test_reconcile_invalid_class_config():
    """Make sure a class config the builder can't honor is a BuildError at the
    Deployment step
    """
    store = setup_store(
        class_config=setup_class_config(default_instances=0, min_instances=1)
    )
    result = run(store)
    assert result.outcome is ReconcileOutcome.FATAL
    assert result.exception.step is ChildKind.DEPLOYMENT
    assert isinstance(result.exception.cause, BuildError)


def test_reconcile_parent_without_uid_is_fatal():
    """Make sure a parent that can't be identified is never retried and no
    child is written without a usable owner reference
    """
    store = setup_store(parent=setup_parent(uid=None))
    result = run(store)
    assert result.outcome is ReconcileOutcome.FATAL
    assert isinstance(result.exception, ConfigError)
    store.create_or_update.assert_not_called()


def test_reconcile_unexpected_error_is_retried():
    """Make sure an error outside the library hierarchy is retried"""
    store = setup_store()
    factory = mock.Mock(side_effect=RuntimeError("boom"))
    result = GatewayReconciler(factory, store=store).safe_reconcile(
        TEST_NAMESPACE, TEST_INSTANCE_NAME
    )
    assert result.outcome is ReconcileOutcome.RETRY
    assert isinstance(result.exception, RuntimeError)


def test_reconcile_builder_gets_class_config():
    """Make sure the builder is constructed with the parent and the resolved
    class config
    """
    builders = []
    store = setup_store(class_config=setup_class_config(default_instances=2))
    result = run(store, builders=builders)
    assert result.outcome is ReconcileOutcome.DONE
    assert len(builders) == 1
    assert builders[0].parent.metadata.uid == TEST_INSTANCE_UID
    assert builders[0].class_config.spec.deployment.defaultInstances == 2
    assert store.get_child(ChildKind.DEPLOYMENT)["spec"]["replicas"] == 2


def test_reconcile_without_class():
    """Make sure a parent whose class can't be found still reconciles with an
    empty class config
    """
    builders = []
    store = setup_store(with_class=False)
    result = run(store, builders=builders)
    assert result.outcome is ReconcileOutcome.DONE
    assert builders[0].class_config == {}


def test_reconcile_twice_is_stable():
    """Make sure a second reconcile changes nothing"""
    store = setup_store()
    run(store)
    before = store.snapshot()
    assert run(store).outcome is ReconcileOutcome.DONE
    assert store.snapshot() == before


## setup_store #################################################################


def test_setup_store_given():
    store = setup_store()
    assert GatewayReconciler(builder_factory(), store=store).setup_store() is store


def test_setup_store_dry_run():
    """Make sure dry run mode uses one in-memory store across reconciles"""
    with library_config(dry_run=True):
        reconciler = GatewayReconciler(builder_factory())
        store = reconciler.store
        assert isinstance(store, DryRunStore)
        assert reconciler.setup_store() is store

        # Concurrent reconciles share the store made at construction
        stores = []
        threads = [
            Thread(target=lambda: stores.append(reconciler.setup_store()))
            for _ in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert all(other is store for other in stores)
        result = reconciler.safe_reconcile(TEST_NAMESPACE, TEST_INSTANCE_NAME)
        assert result.outcome is ReconcileOutcome.DONE


def test_setup_store_live():
    """Make sure the live store is used outside of dry run mode"""
    with library_config(dry_run=False):
        reconciler = GatewayReconciler(builder_factory())
        assert isinstance(reconciler.setup_store(), OpenshiftStore)
        assert reconciler.store is None


## Logging #####################################################################


def test_generate_id():
    reconcile_id = GatewayReconciler.generate_id()
    assert len(reconcile_id) == 22
    assert reconcile_id != GatewayReconciler.generate_id()


def test_configure_logging_defaults():
    """Make sure logging falls back to the library config"""
    alog_mock = AlogConfigureMock()
    parent = aconfig.Config({}, override_env_vars=False)
    with library_config(log_level="debug", log_thread_id=True):
        with mock.patch("alog.configure", alog_mock):
            GatewayReconciler.configure_logging(parent, "id")
    assert alog_mock.kwargs.get("default_level") == "debug"
    assert alog_mock.kwargs.get("filters") == ""
    assert alog_mock.kwargs.get("formatter") == "pretty"
    assert alog_mock.kwargs.get("thread_id") is True


def test_configure_logging_json_formatter():
    """Make sure that if json logging is enabled the custom formatter is used"""
    alog_mock = AlogConfigureMock()
    parent = aconfig.Config(
        setup_parent(metadata={"annotations": {constants.LOG_JSON_NAME: "true"}}),
        override_env_vars=False,
    )
    with mock.patch("alog.configure", alog_mock):
        GatewayReconciler.configure_logging(parent, "id")
    assert isinstance(alog_mock.kwargs.get("formatter"), MeshGateJsonFormatter)


def test_configure_logging_with_annotations():
    """Make sure the log annotations on the parent override the config"""
    alog_mock = AlogConfigureMock()
    annotations = {
        constants.LOG_DEFAULT_LEVEL_NAME: "debug3",
        constants.LOG_FILTERS_NAME: "PIPE:debug4",
        constants.LOG_THREAD_ID_NAME: "false",
    }
    parent = aconfig.Config(
        setup_parent(metadata={"annotations": annotations}), override_env_vars=False
    )
    with mock.patch("alog.configure", alog_mock):
        GatewayReconciler.configure_logging(parent, "id")
    assert alog_mock.kwargs.get("default_level") == "debug3"
    assert alog_mock.kwargs.get("filters") == "PIPE:debug4"
    assert alog_mock.kwargs.get("thread_id") is False


def test_configure_logging_concurrent_parents():
    """Make sure a reconcile of one parent configuring logging does not relabel
    the lines of a reconcile of another parent running at the same time
    """
    alog_mock = AlogConfigureMock()
    both_configured = Barrier(2)
    lines = {}

    def reconcile(name, uid, reconcile_id):
        parent = aconfig.Config(
            setup_parent(
                name=name,
                uid=uid,
                metadata={"annotations": {constants.LOG_JSON_NAME: "true"}},
            ),
            override_env_vars=False,
        )
        GatewayReconciler.configure_logging(parent, reconcile_id)
        both_configured.wait(timeout=5)
        # Whichever formatter was installed last is the one in use
        record = logging.LogRecord("RECON", logging.INFO, __file__, 1, "hi", (), None)
        lines[name] = json.loads(alog_mock.kwargs["formatter"].format(record))
        set_reconcile_context()

    with mock.patch("alog.configure", alog_mock):
        threads = [
            Thread(target=reconcile, args=("gw-a", "uid-a", "ID-A")),
            Thread(target=reconcile, args=("gw-b", "uid-b", "ID-B")),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    assert lines["gw-a"]["parentName"] == "gw-a"
    assert lines["gw-a"]["parentUid"] == "uid-a"
    assert lines["gw-a"]["reconciliationId"] == "ID-A"
    assert lines["gw-b"]["parentName"] == "gw-b"
    assert lines["gw-b"]["reconciliationId"] == "ID-B"


def test_reconcile_clears_log_context():
    """Make sure lines logged after a reconcile are not labeled with its
    parent
    """
    run(setup_store())
    record = logging.LogRecord("RECON", logging.INFO, __file__, 1, "hi", (), None)
    line = json.loads(MeshGateJsonFormatter().format(record))
    assert line.get("parentName") is None
    assert line.get("reconciliationId") is None
