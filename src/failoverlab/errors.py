"""Domain errors for failoverlab."""


class OrchestratorError(RuntimeError):
    """Raised when the test topology cannot be provisioned or driven safely."""


class ProvisionError(OrchestratorError):
    """A cluster control-plane call failed."""


class NotFoundError(OrchestratorError):
    """The requested cluster does not exist (anymore)."""


class AccessError(OrchestratorError):
    """An allowlist call or the public address lookup failed."""


class ProxyError(OrchestratorError):
    """A fault-injection proxy could not be created, started or stopped."""


class LifecycleError(OrchestratorError):
    """An illegal lifecycle state transition was requested."""


class StepFailure(OrchestratorError):
    """A provisioning step failed; carries the step name and the original error."""

    def __init__(self, step: str, cause: Exception):
        super().__init__(f"Step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause


class ClusterExistsError(ProvisionError):
    """A cluster with the requested identifier already exists and is not ours to manage."""
