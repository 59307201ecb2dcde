from typing import Any, Dict, Optional

from models.trigger_context import (
    BaseTriggerContext,
    InvoiceOverdueContext,
    JobStatusChangedContext,
    MissedCallContext,
    PaymentReceivedContext,
)
from utils.formatting import format_currency, format_date, format_time


def build_template_variables(context: BaseTriggerContext,
                             default_timezone: str,
                             portal_link: Optional[str] = None) -> Dict[str, Any]:
    """
    Flattens a trigger context into the variables message templates see.

    Nested snapshots stay available (`{{ job.title }}`) next to the flat
    aliases older templates use (`{{ job_title }}`). Money is preformatted
    with two decimals and dates use the company timezone.
    """
    data = context.model_dump(mode="json")
    company = context.company
    tz_name = (company.timezone if company and company.timezone else None) or default_timezone

    variables: Dict[str, Any] = {
        "timezone": tz_name,
        "job": data.get("job") or {},
        "client": data.get("client") or {},
        "company": data.get("company") or {},
        "estimate": data.get("estimate") or {},
        "invoice": data.get("invoice") or {},
        "event_type": data.get("event_type"),
    }

    client = context.client
    if client:
        variables["client_name"] = client.name or f"{client.display_first_name} {client.display_last_name}".strip()
        variables["client_first_name"] = client.display_first_name
        variables["client_last_name"] = client.display_last_name
        variables["client_email"] = client.email or ""
        variables["client_phone"] = client.phone or ""

    if company:
        variables["company_name"] = company.name or ""
        variables["company_phone"] = company.phone or ""
        variables["company_email"] = company.email or ""

    job = getattr(context, "job", None)
    if job:
        variables["job_id"] = job.id
        variables["job_title"] = job.title or ""
        variables["job_status"] = getattr(context, "new_status", None) or job.status or ""
        variables["job_address"] = job.address or ""
        variables["technician_name"] = job.technician_name or ""
        variables["scheduled_date"] = format_date(job.schedule_start, tz_name)
        variables["scheduled_time"] = format_time(job.schedule_start, tz_name)

    estimate = getattr(context, "estimate", None)
    if estimate:
        variables["estimate_number"] = estimate.estimate_number or ""
        variables["total"] = format_currency(estimate.total)
        variables["amount"] = variables["total"]

    invoice = getattr(context, "invoice", None)
    if invoice:
        variables["invoice_number"] = invoice.invoice_number or ""
        variables["total"] = format_currency(invoice.total)
        variables["amount"] = format_currency(invoice.total - invoice.amount_paid)
        variables["due_date"] = format_date(invoice.due_date, tz_name)

    if isinstance(context, InvoiceOverdueContext):
        variables["days_overdue"] = context.days_overdue
    if isinstance(context, MissedCallContext):
        variables["caller_phone"] = context.caller_phone
    if isinstance(context, JobStatusChangedContext):
        variables["previous_status"] = context.previous_status or ""
    if isinstance(context, PaymentReceivedContext):
        variables["amount"] = format_currency(context.amount)
        variables["payment_method"] = context.method or ""

    variables["portal_link"] = portal_link or ""
    return variables
