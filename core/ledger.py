"""
Ledger store: persistence for projects, quotes, milestones, tasks, invoices,
payments and the notification outbox.

Every state transition is a single conditional UPDATE whose WHERE clause
carries the precondition (compare-and-swap). Methods return the updated
entity when the precondition held and None when it did not, so callers
never act on a stale read. Units that must commit together (invoice insert
plus milestone link, paid transition plus payment insert) run inside
PostgresClient.transaction().
"""

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from psycopg2 import errors as pg_errors

from clients.postgres_client import PostgresClient
from core.exceptions import InvalidState
from core.models import (
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    Milestone,
    MilestoneCreate,
    MilestoneStatus,
    Notification,
    NotificationCreate,
    NotificationStatus,
    Payment,
    PaymentCreate,
    Project,
    Quote,
    QuoteStatus,
    Task,
    TaskStatus,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class _PreconditionFailed(Exception):
    """Raised inside a transaction to roll it back when a CAS matched nothing."""


class LedgerStore:
    """SQL-backed ledger. All reads are fresh; nothing is cached."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    # =========================================================================
    # PROJECTS & QUOTES
    # =========================================================================

    def get_project(self, project_id: UUID) -> Project | None:
        row = self.postgres.execute_single(
            "SELECT * FROM projects WHERE id = %s", (project_id,)
        )
        return Project.model_validate(row) if row else None

    def get_quote(self, quote_id: UUID) -> Quote | None:
        row = self.postgres.execute_single(
            "SELECT * FROM quotes WHERE id = %s", (quote_id,)
        )
        return Quote.model_validate(row) if row else None

    def mark_quote_accepted(self, quote_id: UUID, when: datetime) -> bool:
        """Flip a quote to accepted. False if missing or already accepted."""
        count = self.postgres.execute_rowcount(
            """
            UPDATE quotes
            SET status = %s, accepted_at = %s, updated_at = %s
            WHERE id = %s AND status <> %s
            """,
            (QuoteStatus.ACCEPTED.value, when, when, quote_id, QuoteStatus.ACCEPTED.value)
        )
        return count == 1

    # =========================================================================
    # MILESTONES
    # =========================================================================

    def get_milestone(self, milestone_id: UUID) -> Milestone | None:
        row = self.postgres.execute_single(
            "SELECT * FROM milestones WHERE id = %s", (milestone_id,)
        )
        return Milestone.model_validate(row) if row else None

    def list_milestones_for_project(self, project_id: UUID) -> list[Milestone]:
        rows = self.postgres.execute(
            """
            SELECT * FROM milestones
            WHERE project_id = %s
            ORDER BY order_index ASC, planned_date ASC
            """,
            (project_id,)
        )
        return [Milestone.model_validate(row) for row in rows]

    def create_milestone(self, project_id: UUID, data: MilestoneCreate) -> Milestone:
        with self.postgres.transaction() as cur:
            row = self._insert_milestone(cur, project_id, data)
        return Milestone.model_validate(row)

    def _insert_milestone(self, cur, project_id: UUID, data: MilestoneCreate) -> dict:
        now = now_utc()
        order_index = data.order_index
        if order_index is None:
            order_index = cur.fetch_one(
                "SELECT COUNT(*) AS n FROM milestones WHERE project_id = %s",
                (project_id,)
            )["n"]

        return cur.fetch_one(
            """
            INSERT INTO milestones (
                id, project_id, title, description, planned_date,
                status, is_billable, billing_percentage, category,
                order_index, task_id, created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s, %s, %s
            )
            RETURNING *
            """,
            (
                uuid4(), project_id, data.title, data.description, data.planned_date,
                MilestoneStatus.PENDING.value, data.is_billable, data.billing_percentage,
                data.category, order_index, data.task_id, now, now
            )
        )

    def complete_milestone(self, milestone_id: UUID, actor_id: UUID | None, when: datetime) -> Milestone | None:
        """pending -> completed. None if the milestone was not pending."""
        rows = self.postgres.execute_returning(
            """
            UPDATE milestones
            SET status = %s, completed_at = %s, completed_by_id = %s,
                actual_date = %s, updated_at = %s
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            (
                MilestoneStatus.COMPLETED.value, when, actor_id,
                when, when, milestone_id, MilestoneStatus.PENDING.value
            )
        )
        return Milestone.model_validate(rows[0]) if rows else None

    def delete_milestone(self, milestone_id: UUID) -> bool:
        """
        Delete a pending, unbilled milestone. False if the precondition failed.

        tasks.milestone_id is ON DELETE SET NULL, so an originating task is
        left in place, unpromoted.
        """
        count = self.postgres.execute_rowcount(
            """
            DELETE FROM milestones
            WHERE id = %s AND status = %s AND invoice_id IS NULL
            """,
            (milestone_id, MilestoneStatus.PENDING.value)
        )
        return count == 1

    # =========================================================================
    # TASKS
    # =========================================================================

    def get_task(self, task_id: UUID) -> Task | None:
        row = self.postgres.execute_single(
            "SELECT * FROM tasks WHERE id = %s", (task_id,)
        )
        return Task.model_validate(row) if row else None

    def list_tasks_for_project(self, project_id: UUID) -> list[Task]:
        rows = self.postgres.execute(
            "SELECT * FROM tasks WHERE project_id = %s ORDER BY created_at ASC",
            (project_id,)
        )
        return [Task.model_validate(row) for row in rows]

    def promote_task(self, task_id: UUID, data: MilestoneCreate, note: str) -> Milestone | None:
        """
        Create a milestone from a task and link it, in one transaction.

        None if the task was already promoted or completed by the time the
        link was attempted.
        """
        try:
            with self.postgres.transaction() as cur:
                task = cur.fetch_one("SELECT project_id FROM tasks WHERE id = %s", (task_id,))
                if task is None:
                    raise _PreconditionFailed()

                milestone_row = self._insert_milestone(cur, task["project_id"], data)
                linked = cur.execute(
                    """
                    UPDATE tasks
                    SET milestone_id = %s,
                        notes = CASE WHEN notes IS NULL OR notes = '' THEN %s ELSE notes || E'\\n\\n' || %s END,
                        updated_at = %s
                    WHERE id = %s AND milestone_id IS NULL AND status <> %s
                    """,
                    (
                        milestone_row["id"], note, note, now_utc(),
                        task_id, TaskStatus.COMPLETED.value
                    )
                )
                if linked != 1:
                    raise _PreconditionFailed()
        except _PreconditionFailed:
            return None

        return Milestone.model_validate(milestone_row)

    def complete_task(self, task_id: UUID, when: datetime, actual_hours: Decimal | None = None) -> Task | None:
        """Mark a task completed. None if it was already completed."""
        rows = self.postgres.execute_returning(
            """
            UPDATE tasks
            SET status = %s, completed_at = %s,
                actual_hours = COALESCE(%s, actual_hours), updated_at = %s
            WHERE id = %s AND status <> %s
            RETURNING *
            """,
            (
                TaskStatus.COMPLETED.value, when, actual_hours, when,
                task_id, TaskStatus.COMPLETED.value
            )
        )
        return Task.model_validate(rows[0]) if rows else None

    # =========================================================================
    # INVOICES
    # =========================================================================

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s", (invoice_id,)
        )
        return Invoice.model_validate(row) if row else None

    def list_invoices_for_project(self, project_id: UUID) -> list[Invoice]:
        rows = self.postgres.execute(
            "SELECT * FROM invoices WHERE project_id = %s ORDER BY created_at DESC",
            (project_id,)
        )
        return [Invoice.model_validate(row) for row in rows]

    def find_schedule_invoice(self, project_id: UUID, invoice_type: str) -> Invoice | None:
        """The live (non-canceled) schedule invoice of a type for a project, if any."""
        row = self.postgres.execute_single(
            """
            SELECT * FROM invoices
            WHERE project_id = %s AND invoice_type = %s
              AND milestone_id IS NULL AND status <> %s
            LIMIT 1
            """,
            (project_id, invoice_type, InvoiceStatus.CANCELED.value)
        )
        return Invoice.model_validate(row) if row else None

    def _insert_invoice(self, cur, data: InvoiceCreate) -> dict:
        now = now_utc()
        return cur.fetch_one(
            """
            INSERT INTO invoices (
                id, project_id, quote_id, milestone_id, invoice_number,
                amount, description, invoice_type, status,
                issue_date, due_date, customer_name, customer_email,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s
            )
            RETURNING *
            """,
            (
                uuid4(), data.project_id, data.quote_id, data.milestone_id, data.invoice_number,
                data.amount, data.description, data.invoice_type.value, InvoiceStatus.DRAFT.value,
                data.issue_date, data.due_date, data.customer_name, data.customer_email,
                now, now
            )
        )

    def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """Insert a draft invoice not tied to a milestone."""
        try:
            with self.postgres.transaction() as cur:
                row = self._insert_invoice(cur, data)
        except pg_errors.UniqueViolation as exc:
            raise InvalidState(
                f"A {data.invoice_type.value} invoice already exists for project {data.project_id}"
            ) from exc
        return Invoice.model_validate(row)

    def create_milestone_invoice(self, milestone_id: UUID, data: InvoiceCreate) -> Invoice | None:
        """
        Insert a draft invoice and link it onto its milestone in one transaction.

        The link is a CAS on invoice_id IS NULL. If another caller linked first
        the insert is rolled back and None is returned.
        """
        try:
            with self.postgres.transaction() as cur:
                row = self._insert_invoice(cur, data)
                now = now_utc()
                linked = cur.execute(
                    """
                    UPDATE milestones
                    SET invoice_id = %s, billed_at = %s, updated_at = %s
                    WHERE id = %s AND invoice_id IS NULL
                    """,
                    (row["id"], now, now, milestone_id)
                )
                if linked != 1:
                    raise _PreconditionFailed()
        except _PreconditionFailed:
            logger.info("Milestone %s already invoiced, draft discarded", milestone_id)
            return None

        return Invoice.model_validate(row)

    def mark_invoice_sent(
        self,
        invoice_id: UUID,
        gateway_transaction_id: str,
        payment_link: str,
        issue_date: datetime,
    ) -> Invoice | None:
        """draft -> pending. None if the invoice was no longer a draft."""
        rows = self.postgres.execute_returning(
            """
            UPDATE invoices
            SET status = %s, gateway_transaction_id = %s, payment_link = %s,
                issue_date = %s, updated_at = %s
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            (
                InvoiceStatus.PENDING.value, gateway_transaction_id, payment_link,
                issue_date, issue_date, invoice_id, InvoiceStatus.DRAFT.value
            )
        )
        return Invoice.model_validate(rows[0]) if rows else None

    def mark_invoice_paid(self, data: PaymentCreate) -> tuple[Invoice, Payment] | None:
        """
        Mark an invoice paid and record its payment in one transaction.

        The paid transition is a CAS on status <> 'paid'. None if the invoice
        was already paid (a concurrent or repeated delivery won).
        """
        try:
            with self.postgres.transaction() as cur:
                invoice_row = cur.fetch_one(
                    """
                    UPDATE invoices
                    SET status = %s, updated_at = %s
                    WHERE id = %s AND status <> %s
                    RETURNING *
                    """,
                    (
                        InvoiceStatus.PAID.value, data.payment_date,
                        data.invoice_id, InvoiceStatus.PAID.value
                    )
                )
                if invoice_row is None:
                    raise _PreconditionFailed()

                payment_row = cur.fetch_one(
                    """
                    INSERT INTO payments (
                        id, invoice_id, amount, payment_date, payment_method,
                        gateway_transaction_id, gateway_charge_id, status, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (gateway_transaction_id) DO NOTHING
                    RETURNING *
                    """,
                    (
                        uuid4(), data.invoice_id, data.amount, data.payment_date,
                        data.payment_method, data.gateway_transaction_id,
                        data.gateway_charge_id, data.status, now_utc()
                    )
                )
                if payment_row is None:
                    payment_row = cur.fetch_one(
                        "SELECT * FROM payments WHERE gateway_transaction_id = %s",
                        (data.gateway_transaction_id,)
                    )
        except _PreconditionFailed:
            return None

        return Invoice.model_validate(invoice_row), Payment.model_validate(payment_row)

    def list_payments_for_invoice(self, invoice_id: UUID) -> list[Payment]:
        rows = self.postgres.execute(
            "SELECT * FROM payments WHERE invoice_id = %s ORDER BY payment_date ASC",
            (invoice_id,)
        )
        return [Payment.model_validate(row) for row in rows]

    # =========================================================================
    # NOTIFICATION OUTBOX
    # =========================================================================

    def enqueue_notification(self, data: NotificationCreate) -> Notification:
        """Insert an outbox row, or return the existing row with the same dedupe key."""
        rows = self.postgres.execute_returning(
            """
            INSERT INTO notifications (
                id, dedupe_key, kind, to_address, subject, html_body, from_name,
                invoice_id, reference, status, attempts, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 0, %s)
            ON CONFLICT (dedupe_key) DO NOTHING
            RETURNING *
            """,
            (
                uuid4(), data.dedupe_key, data.kind.value, data.to_address, data.subject,
                data.html_body, data.from_name, data.invoice_id, data.reference,
                NotificationStatus.PENDING.value, now_utc()
            )
        )
        if rows:
            return Notification.model_validate(rows[0])

        row = self.postgres.execute_single(
            "SELECT * FROM notifications WHERE dedupe_key = %s", (data.dedupe_key,)
        )
        return Notification.model_validate(row)

    def list_pending_notifications(self, invoice_id: UUID | None = None, limit: int = 100) -> list[Notification]:
        """Undelivered outbox rows, oldest first, optionally for one invoice."""
        if invoice_id is None:
            rows = self.postgres.execute(
                """
                SELECT * FROM notifications
                WHERE status <> %s
                ORDER BY created_at ASC
                LIMIT %s
                """,
                (NotificationStatus.SENT.value, limit)
            )
        else:
            rows = self.postgres.execute(
                """
                SELECT * FROM notifications
                WHERE status <> %s AND invoice_id = %s
                ORDER BY created_at ASC
                LIMIT %s
                """,
                (NotificationStatus.SENT.value, invoice_id, limit)
            )
        return [Notification.model_validate(row) for row in rows]

    def claim_notification(self, notification_id: UUID, when: datetime, stale_before: datetime) -> bool:
        """
        pending/failed -> sending, or re-take a sending claim older than
        stale_before. False if the row is sent or another worker holds it.
        """
        count = self.postgres.execute_rowcount(
            """
            UPDATE notifications
            SET status = %s, claimed_at = %s, attempts = attempts + 1
            WHERE id = %s
              AND (status IN (%s, %s) OR (status = %s AND claimed_at < %s))
            """,
            (
                NotificationStatus.SENDING.value, when, notification_id,
                NotificationStatus.PENDING.value, NotificationStatus.FAILED.value,
                NotificationStatus.SENDING.value, stale_before,
            )
        )
        return count == 1

    def mark_notification_sent(self, notification_id: UUID, when: datetime) -> bool:
        """sending -> sent. False if the claim was lost."""
        count = self.postgres.execute_rowcount(
            """
            UPDATE notifications
            SET status = %s, sent_at = %s, last_error = NULL
            WHERE id = %s AND status = %s
            """,
            (NotificationStatus.SENT.value, when, notification_id, NotificationStatus.SENDING.value)
        )
        return count == 1

    def mark_notification_failed(self, notification_id: UUID, error: str) -> None:
        """sending -> failed, releasing the claim for the next retry."""
        self.postgres.execute_rowcount(
            """
            UPDATE notifications
            SET status = %s, last_error = %s
            WHERE id = %s AND status = %s
            """,
            (NotificationStatus.FAILED.value, error[:1000], notification_id, NotificationStatus.SENDING.value)
        )
