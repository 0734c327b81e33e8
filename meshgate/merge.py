"""
Per-kind strategies for combining the observed state of a child with the
freshly built desired manifest. Every strategy has the signature

    strategy(observed: Optional[dict], desired: dict) -> dict

and is only called once the ownership guard has allowed the write.
"""

# Standard
from typing import Callable, List, Optional, Tuple
import copy

# First Party
import aconfig
import alog

# Local
from .managed_object import ManagedObject

log = alog.use_channel("MERGE")

MergeStrategy = Callable[[Optional[dict], dict], dict]


## Replace #####################################################################


def replace(observed: Optional[dict], desired: dict) -> dict:
    """The desired manifest wins outright"""
    return desired


## Service #####################################################################


def _port_signature(service: dict) -> List[Tuple[Optional[int], Optional[str]]]:
    return [
        (port.get("port"), port.get("protocol"))
        for port in service.get("spec", {}).get("ports") or []
    ]


def services_equal(observed: Optional[dict], desired: Optional[dict]) -> bool:
    """Compare two Services on their annotations and the ordered
    (port, protocol) pairs of their ports. If either side is missing there is
    nothing to merge and they count as equal. A missing annotation map equals
    an empty one.
    """
    if observed is None or desired is None:
        return True

    if ManagedObject(observed).annotations != ManagedObject(desired).annotations:
        return False

    return _port_signature(observed) == _port_signature(desired)


def merge_service(observed: Optional[dict], desired: dict) -> dict:
    """Keep the annotations and ports of the existing Service on the desired
    Service whenever they differ. The platform injects annotations and
    normalizes ports after the fact, so asserting the built values on every
    reconcile would loop forever.

    NOTE: A port change made on the parent is indistinguishable from platform
        drift here and is discarded along with it. This matches the behavior
        the controller has always had.
    """
    if services_equal(observed, desired):
        log.debug2("Service unchanged on annotations and ports")
        return desired

    log.debug(
        "Carrying annotations and ports of existing Service %s forward",
        desired.get("metadata", {}).get("name"),
    )
    observed_annotations = observed.get("metadata", {}).get("annotations")
    desired_metadata = desired.setdefault("metadata", {})
    if observed_annotations is None:
        desired_metadata.pop("annotations", None)
    else:
        desired_metadata["annotations"] = copy.deepcopy(observed_annotations)

    observed_ports = observed.get("spec", {}).get("ports")
    desired_spec = desired.setdefault("spec", {})
    if observed_ports is None:
        desired_spec.pop("ports", None)
    else:
        desired_spec["ports"] = copy.deepcopy(observed_ports)
    return desired


## Deployment ##################################################################


def deployment_merger(
    merge_deployments: Callable[[aconfig.Config, Optional[dict], dict], dict],
    class_config: aconfig.Config,
) -> MergeStrategy:
    """Bind the class configuration to an external deployment merge function.
    Its result and any error it raises are passed through untouched.
    """

    def merge_deployment(observed: Optional[dict], desired: dict) -> dict:
        return merge_deployments(class_config, observed, desired)

    return merge_deployment
