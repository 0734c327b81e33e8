"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import Optional
from unittest import mock
import copy
import inspect
import os

# First Party
import aconfig
import alog

# Local
from meshgate import constants
from meshgate.builder import GatewayBuilder
from meshgate.child_kind import ChildKind
from meshgate.config import library_config as config_detail_dict
from meshgate.exceptions import assert_build
from meshgate.store import DryRunStore
from meshgate.utils import merge_configs

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "test-gateway"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
TEST_CLASS_NAME = "consul-mesh-gateway"
TEST_CLASS_CONFIG_NAME = "consul-mesh-gateway-config"


## Manifests ###################################################################


def setup_parent(
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    uid=TEST_INSTANCE_UID,
    port=8080,
    gateway_class_name=TEST_CLASS_NAME,
    deleted=False,
    **kwargs,
) -> dict:
    """Make a MeshGateway manifest"""
    parent = {
        "apiVersion": constants.MESH_API_VERSION,
        "kind": constants.MESH_GATEWAY_KIND,
        "metadata": {"name": name, "namespace": namespace, "uid": uid},
        "spec": {
            "gatewayClassName": gateway_class_name,
            "listeners": [{"name": "wan", "port": port, "protocol": "TCP"}],
        },
    }
    if deleted:
        parent["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return merge_configs(parent, kwargs)


def setup_gateway_class(
    name=TEST_CLASS_NAME,
    config_name=TEST_CLASS_CONFIG_NAME,
    group=constants.MESH_GROUP,
    kind=constants.GATEWAY_CLASS_CONFIG_KIND,
) -> dict:
    """Make a GatewayClass manifest whose parametersRef points at a
    GatewayClassConfig. Pass config_name=None for a class without a reference.
    """
    gateway_class = {
        "apiVersion": constants.MESH_API_VERSION,
        "kind": constants.GATEWAY_CLASS_KIND,
        "metadata": {"name": name},
        "spec": {"controllerName": "consul.hashicorp.com/gateway-controller"},
    }
    if config_name:
        gateway_class["spec"]["parametersRef"] = {
            "group": group,
            "kind": kind,
            "name": config_name,
        }
    return gateway_class


def setup_class_config(
    name=TEST_CLASS_CONFIG_NAME,
    default_instances=1,
    min_instances=1,
    max_instances=3,
) -> dict:
    """Make a GatewayClassConfig manifest"""
    return {
        "apiVersion": constants.MESH_API_VERSION,
        "kind": constants.GATEWAY_CLASS_CONFIG_KIND,
        "metadata": {"name": name},
        "spec": {
            "deployment": {
                "defaultInstances": default_instances,
                "minInstances": min_instances,
                "maxInstances": max_instances,
            }
        },
    }


def make_owned_by(obj: dict, name=TEST_INSTANCE_NAME, uid=TEST_INSTANCE_UID) -> dict:
    """Put an owner reference to the named parent on the object"""
    obj.setdefault("metadata", {}).setdefault("ownerReferences", []).append(
        {
            "apiVersion": constants.MESH_API_VERSION,
            "kind": constants.MESH_GATEWAY_KIND,
            "name": name,
            "uid": uid,
        }
    )
    return obj


## Builder #####################################################################


class DummyGatewayBuilder(GatewayBuilder):
    """Builder that makes small but realistic child manifests. Set
    build_fail_kinds to make building the given kinds raise a BuildError.
    """

    def __init__(self, parent, class_config, build_fail_kinds=None):
        super().__init__(parent, class_config)
        self.build_fail_kinds = set(build_fail_kinds or [])
        self.merge_deployments_calls = []

    @property
    def name(self):
        return self.parent.metadata.name

    @property
    def namespace(self):
        return self.parent.metadata.namespace

    @property
    def labels(self):
        return {"mesh.consul.hashicorp.com/managed-by": self.name}

    def _metadata(self, **kwargs):
        metadata = {
            "name": self.name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
        }
        metadata.update(kwargs)
        return metadata

    def _check(self, kind: ChildKind):
        assert_build(
            kind not in self.build_fail_kinds, f"Unable to build {kind.description}"
        )

    def service_account(self):
        self._check(ChildKind.SERVICE_ACCOUNT)
        return {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": self._metadata(),
        }

    def role(self):
        self._check(ChildKind.ROLE)
        return {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "Role",
            "metadata": self._metadata(),
            "rules": [],
        }

    def role_binding(self):
        self._check(ChildKind.ROLE_BINDING)
        return {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": self._metadata(),
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "Role",
                "name": self.name,
            },
            "subjects": [
                {"kind": "ServiceAccount", "name": self.name, "namespace": self.namespace}
            ],
        }

    def service(self):
        self._check(ChildKind.SERVICE)
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": self._metadata(annotations={"consul.hashicorp.com/gateway": "mesh"}),
            "spec": {
                "selector": dict(self.labels),
                "type": "LoadBalancer",
                "ports": [
                    {
                        "name": listener.get("name"),
                        "port": listener.get("port"),
                        "protocol": listener.get("protocol"),
                    }
                    for listener in self.parent.spec.get("listeners", [])
                ],
            },
        }

    def deployment(self):
        self._check(ChildKind.DEPLOYMENT)
        deployment_config = (self.class_config.get("spec") or {}).get(
            "deployment"
        ) or {}
        replicas = deployment_config.get("defaultInstances", 1)
        min_instances = deployment_config.get("minInstances", replicas)
        max_instances = deployment_config.get("maxInstances", replicas)
        assert_build(
            min_instances <= replicas <= max_instances,
            f"defaultInstances {replicas} outside of [{min_instances}, {max_instances}]",
        )
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self._metadata(),
            "spec": {
                "replicas": replicas,
                "selector": {"matchLabels": dict(self.labels)},
                "template": {
                    "metadata": {"labels": dict(self.labels)},
                    "spec": {
                        "serviceAccountName": self.name,
                        "containers": [{"name": "consul-dataplane", "image": "consul"}],
                    },
                },
            },
        }

    def merge_deployments(self, class_config, existing, desired):
        """Keep a replica count scaled out of band as long as it stays inside
        the class bounds
        """
        self.merge_deployments_calls.append((class_config, existing, desired))
        if existing is None:
            return desired
        deployment_config = (class_config.get("spec") or {}).get("deployment") or {}
        replicas = existing.get("spec", {}).get("replicas")
        min_instances = deployment_config.get("minInstances")
        max_instances = deployment_config.get("maxInstances")
        if (
            replicas is not None
            and (min_instances is None or replicas >= min_instances)
            and (max_instances is None or replicas <= max_instances)
        ):
            desired["spec"]["replicas"] = replicas
        return desired


def builder_factory(build_fail_kinds=None, builders=None):
    """Make a builder factory. If a list is given as builders, every builder
    constructed is appended to it for inspection.
    """

    def factory(parent, class_config):
        builder = DummyGatewayBuilder(parent, class_config, build_fail_kinds)
        if builders is not None:
            builders.append(builder)
        return builder

    return factory


## Store #######################################################################


def get_failable_method(fail_flag, method, failure_return=False):
    """Wrap a method so that it fails according to the fail flag. The flag can
    be an exception to raise, a predicate over the call args, or a bool.
    """

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            if fail_flag(*args, **kwargs):
                log.debug4("Predicate failed the call")
                return failure_return
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


def fail_for_kinds(*kinds: ChildKind):
    """Predicate for get_failable_method that matches calls touching any of the
    given child kinds
    """
    kind_names = {kind.kind for kind in kinds}

    def predicate(*args, **kwargs):
        if "kind" in kwargs:
            return kwargs["kind"] in kind_names
        resource = kwargs.get("resource_definition", args[0] if args else {})
        return resource.get("kind") in kind_names

    return predicate


class MockStore(DryRunStore):
    """The MockStore wraps a standard DryRunStore and adds configuration
    options to simulate failures in each of its operations. Each operation is
    a mock.Mock so calls can be inspected.
    """

    def __init__(
        self,
        get_state_fail=False,
        write_fail=False,
        resources=None,
    ):
        super().__init__(resources=resources)
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.create_or_update = mock.Mock(
            side_effect=get_failable_method(
                write_fail, super().create_or_update, (False, False)
            )
        )

    def get_obj(self, kind, name, namespace=TEST_NAMESPACE, api_version=None):
        return super().get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def get_child(self, kind: ChildKind, name=TEST_INSTANCE_NAME, namespace=TEST_NAMESPACE):
        return self.get_obj(kind.kind, name, namespace, kind.api_version)

    def snapshot(self) -> dict:
        """Deep copy of everything in the store"""
        return copy.deepcopy(self._cluster_content)


def setup_store(
    parent: Optional[dict] = None,
    with_class=True,
    class_config: Optional[dict] = None,
    resources=None,
    **kwargs,
) -> MockStore:
    """Make a MockStore holding the parent, its GatewayClass and
    GatewayClassConfig plus any extra resources
    """
    all_resources = [parent if parent is not None else setup_parent()]
    if with_class:
        all_resources.append(setup_gateway_class())
        all_resources.append(
            class_config if class_config is not None else setup_class_config()
        )
    all_resources.extend(resources or [])
    return MockStore(resources=all_resources, **kwargs)


## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    try:
        yield
    finally:
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def as_config(manifest: dict) -> aconfig.Config:
    return aconfig.Config(manifest, override_env_vars=False)
