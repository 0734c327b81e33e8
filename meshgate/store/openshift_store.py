"""
This store is responsible for delegating cluster operations to the openshift
library. It is the one that will be used when the reconciler is running in the
cluster or outside the cluster making live changes.
"""
# Standard
from typing import Optional, Tuple
import copy

# Third Party
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    DynamicApiError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes

# First Party
import alog

# Local
from .. import config, constants
from .base import StoreBase

log = alog.use_channel("OSFTS")


class OpenshiftStore(StoreBase):
    """This store uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, field_manager: Optional[str] = None):
        """
        Args:
            field_manager:  Optional[str]
                The field manager recorded on writes. Defaults to the library
                config value.
        """
        self.field_manager = field_manager or config.field_manager
        self._client = None

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        # The client caches resource handles, so scope a copy to the cluster
        if not namespace:
            resources = copy.copy(resources)
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except DynamicApiError as err:
            log.warning(
                "Failed to fetch [%s/%s] in namespace [%s]: %s",
                kind,
                name,
                namespace,
                err,
            )
            return False, None

        return True, resource.to_dict()

    @alog.logged_function(log.debug)
    def create_or_update(
        self,
        resource_definition: dict,
        exists: bool,
    ) -> Tuple[bool, bool]:
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [
            api_version,
            kind,
            name,
        ], "Cannot write resource without apiVersion, kind or name"

        self._strip_last_applied(resource_definition)

        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            log.warning("No resource handle for [%s/%s]", api_version, kind)
            return False, False

        try:
            if exists:
                log.debug2(
                    "Attempting to replace [%s/%s/%s] in %s",
                    api_version,
                    kind,
                    name,
                    namespace,
                )
                resource_handle.replace(
                    body=resource_definition,
                    name=name,
                    namespace=namespace,
                    field_manager=self.field_manager,
                )
            else:
                log.debug2(
                    "Attempting to create [%s/%s/%s] in %s",
                    api_version,
                    kind,
                    name,
                    namespace,
                )
                resource_handle.create(
                    body=resource_definition,
                    namespace=namespace,
                    field_manager=self.field_manager,
                )

        # A lost race with another writer lands here as a ConflictError and is
        # corrected by the next reconcile
        except DynamicApiError as err:
            log.warning(
                "Failed to write [%s/%s/%s] in %s: %s",
                api_version,
                kind,
                name,
                namespace,
                err,
                exc_info=True,
            )
            return False, False

        return True, True

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the reconciler
        is running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    @staticmethod
    def _strip_last_applied(resource_definition: dict):
        """Make sure that the last-applied annotation is not present on a
        manifest that is about to be written. This can lead to recursive
        nesting!
        """
        annotations = resource_definition.get("metadata", {}).get("annotations")
        if annotations and constants.LAST_APPLIED_ANNOTATION_NAME in annotations:
            log.debug3("Removing [%s]", constants.LAST_APPLIED_ANNOTATION_NAME)
            del annotations[constants.LAST_APPLIED_ANNOTATION_NAME]
            if not annotations:
                del resource_definition["metadata"]["annotations"]

    def _get_resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and
        api_version
        """
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return resources
