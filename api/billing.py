"""Billing routes: milestone, task and invoice transitions, quote schedules."""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from api.base import success_response
from core.commands import (
    BillMilestone,
    CompleteMilestone,
    CompleteTask,
    DeleteMilestone,
    DraftScheduleInvoice,
    PromoteTask,
    SendInvoice,
)
from core.exceptions import InvalidInput
from core.models import InvoiceType, MilestoneCreate


class PromoteTaskRequest(BaseModel):
    billing_percentage: Decimal | None = Field(None, gt=0, le=100)


class CompleteTaskRequest(BaseModel):
    actual_hours: Decimal | None = Field(None, ge=0)


class ScheduleInvoiceRequest(BaseModel):
    invoice_type: InvoiceType


def parse_id(value: str, entity: str) -> UUID:
    """Path ids arrive as strings; malformed ones are an input error, not a 404."""
    try:
        return UUID(value)
    except ValueError as exc:
        raise InvalidInput(f"Invalid {entity} id '{value}'") from exc


def _actor(request: Request) -> UUID | None:
    return getattr(request.state, "user_id", None)


def _completion_payload(result) -> dict:
    return {
        "milestone": result.milestone.model_dump(mode="json"),
        "invoice": result.invoice.model_dump(mode="json") if result.invoice else None,
    }


def create_billing_router(services: dict) -> APIRouter:
    """
    Args:
        services: {"billing": BillingStateMachine, "milestone": MilestoneService,
                   "invoice": InvoiceService}
    """
    router = APIRouter()
    billing = services["billing"]
    milestones = services["milestone"]
    invoices = services["invoice"]

    # =========================================================================
    # MILESTONES
    # =========================================================================

    @router.post("/projects/{project_id}/milestones", status_code=201)
    def create_milestone(project_id: str, body: MilestoneCreate):
        milestone = milestones.create(parse_id(project_id, "project"), body)
        return success_response(milestone.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/milestones/{milestone_id}/complete")
    def complete_milestone(milestone_id: str, request: Request):
        result = billing.execute(CompleteMilestone(parse_id(milestone_id, "milestone"), _actor(request)))
        return success_response(_completion_payload(result)).model_dump(mode="json")

    @router.post("/milestones/{milestone_id}/bill")
    def bill_milestone(milestone_id: str, request: Request):
        result = billing.execute(BillMilestone(parse_id(milestone_id, "milestone"), _actor(request)))
        return success_response(_completion_payload(result)).model_dump(mode="json")

    @router.delete("/milestones/{milestone_id}")
    def delete_milestone(milestone_id: str):
        mid = parse_id(milestone_id, "milestone")
        billing.execute(DeleteMilestone(mid))
        return success_response({"id": str(mid), "deleted": True}).model_dump(mode="json")

    # =========================================================================
    # TASKS
    # =========================================================================

    @router.post("/tasks/{task_id}/promote", status_code=201)
    def promote_task(task_id: str, body: PromoteTaskRequest | None = None):
        percentage = body.billing_percentage if body else None
        milestone = billing.execute(PromoteTask(parse_id(task_id, "task"), percentage))
        return success_response(milestone.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/tasks/{task_id}/complete")
    def complete_task(task_id: str, request: Request, body: CompleteTaskRequest | None = None):
        hours = body.actual_hours if body else None
        result = billing.execute(CompleteTask(parse_id(task_id, "task"), _actor(request), hours))
        return success_response({
            "task": result.task.model_dump(mode="json"),
            "milestone": result.milestone.model_dump(mode="json") if result.milestone else None,
            "invoice": result.invoice.model_dump(mode="json") if result.invoice else None,
        }).model_dump(mode="json")

    # =========================================================================
    # INVOICES
    # =========================================================================

    @router.get("/invoices/{invoice_id}")
    def get_invoice(invoice_id: str):
        invoice = invoices.get(parse_id(invoice_id, "invoice"))
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/send")
    def send_invoice(invoice_id: str):
        invoice = billing.execute(SendInvoice(parse_id(invoice_id, "invoice")))
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/projects/{project_id}/invoices")
    def list_project_invoices(project_id: str):
        rows = invoices.list_for_project(parse_id(project_id, "project"))
        return success_response([i.model_dump(mode="json") for i in rows]).model_dump(mode="json")

    @router.post("/projects/{project_id}/invoices", status_code=201)
    def draft_schedule_invoice(project_id: str, body: ScheduleInvoiceRequest):
        invoice = billing.execute(DraftScheduleInvoice(parse_id(project_id, "project"), body.invoice_type))
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/quotes/{quote_id}/schedule")
    def quote_schedule(quote_id: str):
        schedule = invoices.quote_schedule(parse_id(quote_id, "quote"))
        return success_response(schedule.to_dict()).model_dump(mode="json")

    return router
