"""
Project billing-percentage cap.

The billable milestones of a project, plus its billable percentage-priced
tasks that have not been promoted to a milestone, may not claim more than
100% of the contracted total between them.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from core.exceptions import InvalidInput
from core.models import BillingType, Milestone, Task
from utils.money import to_decimal

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BillingTotals:
    from_tasks: Decimal
    from_milestones: Decimal

    @property
    def grand_total(self) -> Decimal:
        return self.from_tasks + self.from_milestones

    @property
    def remaining(self) -> Decimal:
        return max(Decimal("0"), HUNDRED - self.grand_total)


def calculate_billing_totals(
    milestones: Iterable[Milestone],
    tasks: Iterable[Task],
    exclude_task_id: UUID | None = None,
    exclude_milestone_id: UUID | None = None,
) -> BillingTotals:
    """Sum the billing percentages already claimed on a project."""
    from_tasks = sum(
        (
            to_decimal(task.billing_percentage)
            for task in tasks
            if task.is_billable
            and task.billing_type == BillingType.PERCENTAGE
            and task.milestone_id is None
            and task.id != exclude_task_id
        ),
        Decimal("0"),
    )
    from_milestones = sum(
        (
            to_decimal(milestone.billing_percentage)
            for milestone in milestones
            if milestone.is_billable and milestone.id != exclude_milestone_id
        ),
        Decimal("0"),
    )
    return BillingTotals(from_tasks=from_tasks, from_milestones=from_milestones)


def ensure_within_cap(totals: BillingTotals, billing_percentage: Decimal | None) -> None:
    """Raise InvalidInput if adding billing_percentage would pass 100%."""
    proposed = to_decimal(billing_percentage)
    if proposed <= 0:
        return

    if totals.grand_total + proposed > HUNDRED:
        raise InvalidInput(
            f"Total billing percentage would exceed 100%. "
            f"Current total: {totals.grand_total:.2f}%. "
            f"Available: {totals.remaining:.2f}%."
        )
