"""Resource inventory: stack record, live attributes, and reconciliation in one view."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from stackwarden.analyzer import AnalyzedReport, analyze_report
from stackwarden.detector import DriftDetector
from stackwarden.lifecycle import LifecycleController
from stackwarden.models import ResourceId, StackSpec, StackState, StackStatus
from stackwarden.provider import PublicationSink

logger = logging.getLogger(__name__)

HEALTHY_STATUSES = {StackStatus.CREATE_COMPLETE, StackStatus.UPDATE_COMPLETE}


@dataclass(frozen=True)
class Inventory:
    """Everything the inventory command reports for one stack."""

    state: StackState
    analyzed: AnalyzedReport
    attributes: dict[ResourceId, dict[str, str]] = field(default_factory=dict)
    parameters: dict[str, str] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.state.status in HEALTHY_STATUSES and not self.analyzed.report.has_drift


def take_inventory(
    spec: StackSpec,
    controller: LifecycleController,
    detector: DriftDetector,
    inspector=None,
    sink: PublicationSink | None = None,
    parameter_path: str | None = None,
    retained: Iterable[ResourceId] | None = None,
    state: StackState | None = None,
) -> Inventory:
    """Describe the stack (unless ``state`` is given), reconcile it, and read live attributes."""
    if state is None:
        state = controller.status(spec.name)
    report = detector.reconcile(
        spec,
        state,
        retained=spec.retained_identifiers if retained is None else retained,
    )

    attributes = {}
    if inspector is not None:
        for resource in sorted(report.observed):
            attributes[resource] = inspector.attributes(resource)

    parameters = {}
    if sink is not None and parameter_path:
        parameters = sink.list_under(parameter_path)

    return Inventory(
        state=state,
        analyzed=analyze_report(report),
        attributes=attributes,
        parameters=parameters,
    )
