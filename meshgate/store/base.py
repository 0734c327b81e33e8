"""
This defines the base class for all store types
"""

# Standard
from typing import Optional, Tuple
import abc


class StoreBase(abc.ABC):
    """Base class for the object stores the reconciler reads children from and
    writes children to. Implementations report failures through their return
    values rather than raising so that callers decide how a failure is
    classified.
    """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state of a given object by name

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object or None for cluster
                scoped objects
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                False if the lookup failed for a reason other than the object
                not being found
            current_state:  dict or None
                The dict representation of the current object, or None if not
                present
        """

    @abc.abstractmethod
    def create_or_update(
        self,
        resource_definition: dict,
        exists: bool,
    ) -> Tuple[bool, bool]:
        """Write a single object to the store

        Args:
            resource_definition:  dict
                The full manifest to write
            exists:  bool
                Whether the object was observed at its key. Absent objects are
                created, present objects are updated.

        Returns:
            success:  bool
                Whether or not the write succeeded
            changed:  bool
                Whether or not the write resulted in changes
        """
