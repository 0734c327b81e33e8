"""
The closed set of child resource kinds a MeshGateway owns, along with the fixed
order they are written in
"""

# Standard
from enum import Enum
from typing import Tuple


class ChildKind(Enum):
    """Each member carries the kubernetes kind, its apiVersion and a human
    readable description used in error messages
    """

    SERVICE_ACCOUNT = ("ServiceAccount", "v1", "service account")
    ROLE = ("Role", "rbac.authorization.k8s.io/v1", "role")
    ROLE_BINDING = ("RoleBinding", "rbac.authorization.k8s.io/v1", "role binding")
    SERVICE = ("Service", "v1", "service")
    DEPLOYMENT = ("Deployment", "apps/v1", "deployment")

    def __init__(self, kind: str, api_version: str, description: str):
        self.kind = kind
        self.api_version = api_version
        self.description = description

    def __str__(self):
        return self.kind


# Later kinds may reference earlier ones by name (a Deployment runs as the
# ServiceAccount, a RoleBinding binds the Role) so the order is total and
# never changes.
CHILD_KIND_ORDER: Tuple[ChildKind, ...] = (
    ChildKind.SERVICE_ACCOUNT,
    ChildKind.ROLE,
    ChildKind.ROLE_BINDING,
    ChildKind.SERVICE,
    ChildKind.DEPLOYMENT,
)
