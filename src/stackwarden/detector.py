"""Reconciles declared stack membership against live resource existence."""

import logging
from collections.abc import Iterable

from stackwarden.models import (
    ReconciliationReport,
    ResourceId,
    StackSpec,
    StackState,
    StackStatus,
)
from stackwarden.provider import ResourceProbe

logger = logging.getLogger(__name__)


class DriftDetector:
    """Computes a ReconciliationReport without trusting the stack record alone.

    Existence is always established by probing the resources themselves; the
    stack record only contributes to what is *declared*.
    """

    def __init__(self, probe: ResourceProbe):
        self._probe = probe

    def reconcile(
        self,
        spec: StackSpec,
        state: StackState,
        retained: Iterable[ResourceId] = (),
    ) -> ReconciliationReport:
        """Classify every known resource as managed, missing, orphaned, or retained."""
        retained = frozenset(retained)
        declared = self._declared(spec, state)
        observed = self._observe(spec, declared)

        undeclared = observed - declared
        report = ReconciliationReport(
            stack_name=spec.name,
            stack_status=state.status,
            declared=frozenset(declared),
            observed=frozenset(observed),
            managed=frozenset(declared & observed),
            orphaned=frozenset(undeclared - retained),
            missing=frozenset(declared - observed),
            retained=frozenset(undeclared & retained),
        )

        if report.provisional and report.has_drift:
            logger.warning(
                "Stack %s is %s; drift findings are provisional",
                spec.name,
                state.status.value,
            )
        return report

    @staticmethod
    def _declared(spec: StackSpec, state: StackState) -> set[ResourceId]:
        if state.status in (StackStatus.ABSENT, StackStatus.DELETE_COMPLETE):
            return set()
        declared = set(spec.identifiers)
        for resource in state.resources.values():
            identifier = resource.identifier
            if identifier is not None:
                declared.add(identifier)
        return declared

    def _observe(self, spec: StackSpec, declared: set[ResourceId]) -> set[ResourceId]:
        observed: set[ResourceId] = set()
        for kind, prefix in spec.discovery.items():
            found = self._probe.discover(kind, prefix)
            logger.debug("Discovered %d %s resource(s) under %r", len(found), kind, prefix)
            observed |= found

        for identifier in sorted(declared | spec.identifiers):
            if identifier in observed:
                continue
            if self._probe.exists(identifier):
                observed.add(identifier)
        return observed
