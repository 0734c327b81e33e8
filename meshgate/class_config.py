"""
Resolution of the GatewayClassConfig that applies to a MeshGateway. The
MeshGateway names a GatewayClass, and the GatewayClass may point at a
GatewayClassConfig through its parametersRef.
"""

# Standard
from typing import Optional

# First Party
import aconfig
import alog

# Local
from . import config, constants
from .exceptions import assert_store
from .store import StoreBase

log = alog.use_channel("GWCLS")


class GatewayClassConfigResolver:
    """Resolve the class configuration for a parent on a best-effort basis.
    Anything missing or not applicable yields an empty config. Only a failed
    lookup raises.
    """

    def __init__(self, store: StoreBase):
        self.store = store

    def resolve(self, parent: aconfig.Config) -> aconfig.Config:
        """Get the GatewayClassConfig for the given MeshGateway

        Args:
            parent:  aconfig.Config
                The MeshGateway manifest

        Returns:
            class_config:  aconfig.Config
                The GatewayClassConfig manifest, or an empty config

        Raises:
            StoreError: If a lookup fails for a reason other than not found
        """
        gateway_class = self._get_gateway_class(parent)
        if gateway_class is None:
            return _empty()
        return self._get_class_config(gateway_class)

    ## Implementation Details ##################################################

    def _get(self, kind: str, name: str) -> Optional[dict]:
        """Cluster scoped lookup in the mesh group"""
        success, content = self.store.get_object_current_state(
            kind=kind,
            name=name,
            namespace=None,
            api_version=constants.MESH_API_VERSION,
        )
        assert_store(success, f"Failed to fetch {kind}/{name}")
        return content

    def _get_gateway_class(self, parent: aconfig.Config) -> Optional[dict]:
        class_name = (parent.get("spec") or {}).get("gatewayClassName")
        if not class_name:
            log.debug("Parent names no GatewayClass")
            return None

        gateway_class = self._get(constants.GATEWAY_CLASS_KIND, class_name)
        if gateway_class is None:
            log.debug("GatewayClass [%s] not found", class_name)
        return gateway_class

    def _get_class_config(self, gateway_class: dict) -> aconfig.Config:
        ref = (gateway_class.get("spec") or {}).get("parametersRef")
        if not ref:
            log.debug2("GatewayClass has no parametersRef")
            return _empty()

        if (
            ref.get("group") != config.mesh_group
            or ref.get("kind") != config.gateway_class_config_kind
        ):
            log.debug(
                "parametersRef %s/%s does not point at a %s",
                ref.get("group"),
                ref.get("kind"),
                config.gateway_class_config_kind,
            )
            return _empty()

        class_config = self._get(config.gateway_class_config_kind, ref.get("name"))
        if class_config is None:
            log.debug("%s [%s] not found", ref.get("kind"), ref.get("name"))
            return _empty()

        log.debug2("Resolved class config [%s]", ref.get("name"))
        return aconfig.Config(class_config, override_env_vars=False)


def _empty() -> aconfig.Config:
    return aconfig.Config({}, override_env_vars=False)
