# Overview: Service-layer operations for availability reconciliation; encapsulates business logic and database work.

"""
Availability Reconciler

Compares requested quotation lines against the availability oracle and
proposes adjustments instead of failing outright:

- available >= requested      -> no action
- 0 < available < requested   -> "adjusted" (quantity lowered to available)
- available == 0              -> "removed"

Invoked on draft -> submitted and again just before conversion. The caller
decides what a non-clean report means: raise AvailabilityConflictError, or
apply the adjustments when the buyer confirmed them. Re-running against
already reconciled lines yields a clean report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable

from ..errors import InvalidRequestError
from . import inventory_service


ADJUSTED = "adjusted"
REMOVED = "removed"


@dataclass
class LineAdjustment:
    catalog_item_id: int
    item_name: str
    kind: str
    requested_quantity: int
    available_quantity: int
    line: object = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "catalog_item_id": self.catalog_item_id,
            "item_name": self.item_name,
            "type": self.kind,
            "requested_quantity": self.requested_quantity,
            "available_quantity": self.available_quantity,
        }


@dataclass
class ReconciliationReport:
    adjustments: list[LineAdjustment] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.adjustments

    def to_list(self) -> list[dict]:
        return [adj.to_dict() for adj in self.adjustments]


def reconcile_lines(
    lines: Iterable,
    availability: Callable[[int], int] | None = None,
) -> ReconciliationReport:
    """
    Check each line against current availability.

    availability defaults to inventory_service.available; any callable taking
    a catalog item id works. AvailabilityUnknownError from the oracle
    propagates unchanged.
    """
    lookup = availability or inventory_service.available
    report = ReconciliationReport()
    for line in lines:
        available_qty = max(0, int(lookup(line.catalog_item_id)))
        if available_qty >= line.quantity:
            continue
        report.adjustments.append(
            LineAdjustment(
                catalog_item_id=line.catalog_item_id,
                item_name=line.item_name,
                kind=REMOVED if available_qty == 0 else ADJUSTED,
                requested_quantity=line.quantity,
                available_quantity=available_qty,
                line=line,
            )
        )
    return report


def apply_adjustments(quotation, report: ReconciliationReport) -> None:
    """
    Rewrite the quotation's lines from a report (no commit).

    Adjusted lines take the available quantity; removed lines are deleted.
    Raises InvalidRequestError when nothing would remain.
    """
    if report.is_clean:
        return

    for adj in report.adjustments:
        if adj.kind == REMOVED:
            quotation.lines.remove(adj.line)
        else:
            adj.line.quantity = adj.available_quantity
            adj.line.available_at_request = adj.available_quantity

    if not quotation.lines:
        raise InvalidRequestError(
            "None of the requested items are available",
            details={"items": report.to_list()},
        )

    for position, line in enumerate(quotation.lines, start=1):
        line.position = position

    quotation.last_adjustments = report.to_list()
