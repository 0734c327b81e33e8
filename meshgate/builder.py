"""
The GatewayBuilder is the interface to the collaborator that turns a
MeshGateway and its class configuration into the desired manifests of each
child. The reconciler only consumes it; how the manifests are constructed is up
to the implementation.
"""

# Standard
from typing import Callable, Optional
import abc

# First Party
import aconfig

# Local
from .child_kind import ChildKind


class GatewayBuilder(abc.ABC):
    """Base class for builders. A new builder is constructed for every
    reconcile, so implementations may cache whatever they derive from the
    parent.
    """

    def __init__(self, parent: aconfig.Config, class_config: aconfig.Config):
        """
        Args:
            parent:  aconfig.Config
                The full manifest of the MeshGateway being reconciled
            class_config:  aconfig.Config
                The resolved GatewayClassConfig, empty if none applies
        """
        self.parent = parent
        self.class_config = class_config

    @abc.abstractmethod
    def service_account(self) -> dict:
        """Desired ServiceAccount manifest"""

    @abc.abstractmethod
    def role(self) -> dict:
        """Desired Role manifest"""

    @abc.abstractmethod
    def role_binding(self) -> dict:
        """Desired RoleBinding manifest"""

    @abc.abstractmethod
    def service(self) -> dict:
        """Desired Service manifest"""

    @abc.abstractmethod
    def deployment(self) -> dict:
        """Desired Deployment manifest

        Raises:
            BuildError: If the class configuration does not allow a valid
                Deployment to be constructed
        """

    @abc.abstractmethod
    def merge_deployments(
        self,
        class_config: aconfig.Config,
        existing: Optional[dict],
        desired: dict,
    ) -> dict:
        """Reconcile an existing Deployment with the desired one according to
        the class configuration, returning the manifest to write
        """

    def build(self, kind: ChildKind) -> dict:
        """Build the desired manifest of the given child kind"""
        return {
            ChildKind.SERVICE_ACCOUNT: self.service_account,
            ChildKind.ROLE: self.role,
            ChildKind.ROLE_BINDING: self.role_binding,
            ChildKind.SERVICE: self.service,
            ChildKind.DEPLOYMENT: self.deployment,
        }[kind]()


# Signature of the factory the reconciler uses to get a builder
BuilderFactory = Callable[[aconfig.Config, aconfig.Config], GatewayBuilder]
