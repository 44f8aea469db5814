"""Exception taxonomy for stackwarden.

Library code raises these; the CLI decides how they are rendered and which exit
code they map to.
"""


class StackwardenError(Exception):
    """Base class for every stackwarden error."""


class ConfigurationError(StackwardenError):
    """Required configuration is missing or malformed."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])


class PrerequisiteError(StackwardenError):
    """A tool, credential, or permission needed before any mutating call is missing."""

    def __init__(self, failures: list[str]):
        super().__init__(f"{len(failures)} prerequisite check(s) failed: " + "; ".join(failures))
        self.failures = list(failures)


class ProviderUnavailable(StackwardenError):
    """The provider API could not be reached or is throttling; the call may be retried."""


class StackBusy(StackwardenError):
    """Another operation is already in flight for the stack."""

    def __init__(self, stack_name: str, status: str):
        super().__init__(
            f"Stack {stack_name!r} is busy ({status}); wait for the in-flight operation to finish"
        )
        self.stack_name = stack_name
        self.status = status


class StackInFailedState(StackwardenError):
    """The stack is in a terminal failure status and automatic recovery was not requested."""

    def __init__(self, stack_name: str, status: str):
        self.stack_name = stack_name
        self.status = status
        self.remediation = [
            f"Inspect the stack events: aws cloudformation describe-stack-events --stack-name {stack_name}",
            "Enable automatic recovery (AUTO_DELETE_FAILED_STACK=true or --auto-recover), "
            f"or delete the stack: aws cloudformation delete-stack --stack-name {stack_name}",
            "Re-run the deployment",
        ]
        super().__init__(f"Stack {stack_name!r} is in failed state {status}")


class StackOperationFailed(StackwardenError):
    """A create, update, or delete reached a terminal status other than success.

    ``failed_resources`` holds the ResourceEvent entries that explain the
    failure, newest first, when the provider reported any.
    """

    operation = "operation"

    def __init__(self, stack_name: str, status: str, failed_resources=None, remediation: str = ""):
        self.stack_name = stack_name
        self.status = status
        self.failed_resources = list(failed_resources or [])
        self.remediation = remediation
        super().__init__(f"Stack {self.operation} failed for {stack_name!r}: {status}")


class StackCreateFailed(StackOperationFailed):
    operation = "create"


class StackUpdateFailed(StackOperationFailed):
    operation = "update"


class StackDeleteFailed(StackOperationFailed):
    operation = "delete"


class PollCancelled(StackwardenError):
    """Waiting was interrupted by the caller. The provider operation keeps running."""

    def __init__(self, stack_name: str):
        super().__init__(
            f"Stopped waiting on {stack_name!r}; the provider operation is still running"
        )
        self.stack_name = stack_name


class PollTimeout(StackwardenError):
    """The stack did not reach a terminal status before the wait ceiling."""

    def __init__(self, stack_name: str, waited: float, last_status: str | None = None):
        super().__init__(
            f"Gave up waiting on {stack_name!r} after {waited:.0f}s (last status: {last_status})"
        )
        self.stack_name = stack_name
        self.waited = waited
        self.last_status = last_status
