"""Interfaces the lifecycle engine expects from its collaborators."""

from collections.abc import Iterable, Mapping
from typing import Protocol

from stackwarden.models import OperationHandle, ResourceEvent, ResourceId, StackResource, StackState


class ProviderClient(Protocol):
    """Idempotent operations on a named stack."""

    def describe(self, name: str) -> StackState | None:
        """Return the stack state, or None when the stack does not exist."""

    def create(self, name: str, parameters: Mapping[str, str], **kwargs) -> OperationHandle: ...

    def update(
        self, name: str, parameters: Mapping[str, str], **kwargs
    ) -> OperationHandle | None:
        """Start an update. None means the provider found nothing to change."""

    def delete(self, name: str, retain: Iterable[str] = ()) -> OperationHandle: ...

    def list_resource_events(self, name: str) -> list[ResourceEvent]:
        """Resource events for the stack, newest first."""

    def list_stack_resources(self, name: str) -> list[StackResource]: ...


class ResourceProbe(Protocol):
    """Direct, stack-independent resource existence checks."""

    def exists(self, resource_id: ResourceId) -> bool: ...

    def discover(self, kind: str, prefix: str) -> set[ResourceId]: ...


class PublicationSink(Protocol):
    """Key/value store that receives published stack outputs."""

    def publish(self, path_prefix: str, values: Mapping[str, str]) -> int: ...

    def list_under(self, path_prefix: str) -> dict[str, str]: ...

    def delete_under(self, path_prefix: str) -> int: ...
