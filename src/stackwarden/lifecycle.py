"""Drives a named stack through create, update, and delete."""

import logging
from collections.abc import Iterable

from stackwarden.errors import (
    StackBusy,
    StackCreateFailed,
    StackDeleteFailed,
    StackInFailedState,
    StackOperationFailed,
    StackUpdateFailed,
)
from stackwarden.models import (
    ApplyOutcome,
    ApplyResult,
    DestroyResult,
    Operation,
    OperationHandle,
    ResourceEvent,
    StackSpec,
    StackState,
    StackStatus,
)
from stackwarden.poller import Poller
from stackwarden.provider import ProviderClient, PublicationSink

logger = logging.getLogger(__name__)

REMEDIATION = {
    Operation.CREATE: "Inspect the failed resources above, delete the stack, and re-run apply "
    "(or re-run with --auto-recover to delete it automatically).",
    Operation.UPDATE: "The stack rolled back. Fix the failing resources and re-run apply; "
    "use --auto-recover if the stack must be recreated.",
    Operation.DELETE: "Resolve the dependencies of the resources above (for example empty a "
    "non-empty bucket), then re-run destroy.",
}

_FAILURES = {
    Operation.CREATE: StackCreateFailed,
    Operation.UPDATE: StackUpdateFailed,
    Operation.DELETE: StackDeleteFailed,
}


def require_confirmation(token_required: str, value: str) -> bool:
    """Return True only if ``value`` is exactly ``token_required``."""
    return value == token_required


class LifecycleController:
    """Applies and destroys stacks against a provider.

    Publication of stack outputs to ``sink`` happens only after an apply has
    reached a successful terminal status, and cleanup of ``parameter_path``
    only after the stack is confirmed deleted.
    """

    def __init__(
        self,
        provider: ProviderClient,
        sink: PublicationSink | None = None,
        poller: Poller | None = None,
        parameter_path: str | None = None,
    ):
        self._provider = provider
        self._sink = sink
        self._poller = poller or Poller()
        self._parameter_path = parameter_path

    def status(self, name: str) -> StackState:
        """Current state of the stack; an absent state when it does not exist."""
        state = self._provider.describe(name)
        if state is None or not state.exists:
            return StackState.absent(name)
        return state

    def apply(self, spec: StackSpec, auto_recover_failed: bool = False) -> ApplyResult:
        """Create or update ``spec.name`` so that it matches ``spec``."""
        current = self.status(spec.name)
        logger.info("Stack %s is %s", spec.name, current.status.value)
        recovered = False

        if current.status.is_failed:
            if not auto_recover_failed:
                raise StackInFailedState(spec.name, current.status.value)
            logger.warning(
                "Stack %s is in failed state %s; deleting before re-creating",
                spec.name,
                current.status.value,
            )
            self._delete_and_wait(spec.name, retain=())
            current = StackState.absent(spec.name)
            recovered = True

        if current.status == StackStatus.ABSENT:
            handle = self._provider.create(
                spec.name,
                spec.parameters,
                template_body=spec.template_body,
                capabilities=spec.capabilities,
                tags=spec.tags,
            )
            final = self._wait_terminal(handle)
            if final.status != StackStatus.CREATE_COMPLETE:
                raise self._failure(handle, final)
            result = ApplyResult(state=final, outcome=ApplyOutcome.CREATED, recovered=recovered)
        elif current.status.is_complete:
            handle = self._provider.update(
                spec.name,
                spec.parameters,
                template_body=spec.template_body,
                capabilities=spec.capabilities,
                tags=spec.tags,
            )
            if handle is None:
                logger.info("No updates are to be performed on %s", spec.name)
                result = ApplyResult(state=current, outcome=ApplyOutcome.NO_CHANGES)
            else:
                final = self._wait_terminal(handle)
                if final.status != StackStatus.UPDATE_COMPLETE:
                    raise self._failure(handle, final)
                result = ApplyResult(state=final, outcome=ApplyOutcome.UPDATED)
        else:
            raise StackBusy(spec.name, current.status.value)

        published = self._publish(result.state)
        return ApplyResult(
            state=result.state,
            outcome=result.outcome,
            recovered=result.recovered,
            published=published,
        )

    def destroy(self, name: str, retain: Iterable[str] = frozenset()) -> DestroyResult:
        """Delete the stack, keeping the logical resources named in ``retain``.

        A delete failure propagates as StackDeleteFailed; nothing else is
        cleaned up in that case.
        """
        retain = frozenset(retain)
        current = self.status(name)

        if current.status == StackStatus.ABSENT:
            logger.warning("Stack %s not found; nothing to delete", name)
            deleted = self._cleanup_publication()
            return DestroyResult(
                name=name,
                stack_found=False,
                final_status=StackStatus.ABSENT,
                parameters_deleted=deleted,
            )

        if not current.status.is_terminal:
            raise StackBusy(name, current.status.value)

        final = self._delete_and_wait(name, retain)
        deleted = self._cleanup_publication()
        return DestroyResult(
            name=name,
            stack_found=True,
            final_status=final.status,
            retained=retain,
            parameters_deleted=deleted,
        )

    def _delete_and_wait(self, name: str, retain: Iterable[str]) -> StackState:
        handle = self._provider.delete(name, retain)
        final = self._wait_terminal(handle)
        if final.status != StackStatus.ABSENT:
            raise self._failure(handle, final)
        logger.info("Stack %s deleted", name)
        return final

    def _wait_terminal(self, handle: OperationHandle) -> StackState:
        return self._poller.wait(
            handle.name,
            fetch=lambda: self.status(handle.name),
            done=lambda state: state.status.is_terminal,
        )

    def _failure(self, handle: OperationHandle, final: StackState) -> StackOperationFailed:
        failed = self._failed_resources(handle)
        for event in failed:
            logger.error(
                "%s %s (%s): %s",
                event.status,
                event.logical_id,
                event.resource_type,
                event.reason,
            )
        return _FAILURES[handle.operation](
            handle.name,
            final.status.value,
            failed_resources=failed,
            remediation=REMEDIATION[handle.operation],
        )

    def _failed_resources(self, handle: OperationHandle) -> list[ResourceEvent]:
        wanted = f"{handle.operation.value}_FAILED"
        seen: set[str] = set()
        failed = []
        for event in self._provider.list_resource_events(handle.name):
            if event.status != wanted or event.logical_id == handle.name:
                continue
            # Events from earlier operations on the same stack.
            if event.timestamp is not None and event.timestamp < handle.started_at:
                continue
            if event.logical_id in seen:
                continue
            seen.add(event.logical_id)
            failed.append(event)
        return failed

    def _publish(self, state: StackState) -> int:
        if self._sink is None or not self._parameter_path or not state.outputs:
            return 0
        count = self._sink.publish(self._parameter_path, state.outputs)
        logger.info("Published %d output(s) under %s", count, self._parameter_path)
        return count

    def _cleanup_publication(self) -> int:
        if self._sink is None or not self._parameter_path:
            return 0
        count = self._sink.delete_under(self._parameter_path)
        logger.info("Deleted %d parameter(s) under %s", count, self._parameter_path)
        return count
