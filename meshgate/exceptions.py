"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class MeshGateError(Exception):
    """Base class for all meshgate exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not retrying the reconcile without
        outside intervention can succeed
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class MeshGateFatalError(MeshGateError):
    """A MeshGateFatalError is one that a retried reconcile cannot resolve on
    its own. These must be surfaced to a human.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class NotOwnedError(MeshGateFatalError):
    """Exception raised when a resource already exists at a child's key and its
    ownerReferences do not point at the parent being reconciled
    """

    def __init__(self, message: str = "existing resource not owned by controller"):
        super().__init__(message)


class BuildError(MeshGateFatalError):
    """Exception raised when the builder cannot materialize a child's desired
    manifest
    """


class ConfigError(MeshGateFatalError):
    """Exception caused during usage of user-provided configuration"""


## Expected Errors #############################################################


class MeshGateExpectedError(MeshGateError):
    """A MeshGateExpectedError is one that should terminate the current
    reconcile but is expected to resolve in a subsequent one
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class StoreError(MeshGateExpectedError):
    """Exception raised when a store read or write fails for a reason other
    than the object not being found
    """


## Pipeline Errors #############################################################


class PipelineStepError(MeshGateError):
    """Wrapper raised by the pipeline to attach the failing step to the
    underlying error. Fatality is inherited from the wrapped error.
    """

    def __init__(self, step: "ChildKind", cause: Exception):  # noqa: F821
        self.step = step
        self.cause = cause
        is_fatal = isinstance(cause, MeshGateError) and cause.is_fatal_error
        super().__init__(
            message=f"unable to create {step.description}: {cause}",
            is_fatal_error=is_fatal,
        )

    @property
    def not_owned(self) -> bool:
        """Whether the step failed because the existing child is not ours"""
        return isinstance(self.cause, NotOwnedError)


## Assertions ##################################################################


def assert_store(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a StoreError. This should be
    used when a read or write against the store must succeed to continue.
    """
    if not condition:
        raise StoreError(message)


def assert_owned(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a NotOwnedError"""
    if not condition:
        raise NotOwnedError(message) if message else NotOwnedError()


def assert_build(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a BuildError. Builders should
    use this when a child manifest cannot be constructed.
    """
    if not condition:
        raise BuildError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError"""
    if not condition:
        raise ConfigError(message)
