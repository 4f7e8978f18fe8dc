"""
Vocabulary mapping between local records and each remote system.

Status tables are fixed; an unmapped value falls back to the table's
default instead of failing the sync.
"""
from datetime import date, timedelta
from typing import Any, Dict, Optional

CRM_STAGE_BY_STATUS = {
    "planning": "Qualification",
    "in-progress": "Proposal/Price Quote",
    "on-hold": "Negotiation/Review",
    "completed": "Closed Won",
    "cancelled": "Closed Lost",
}
DEFAULT_CRM_STAGE = "Qualification"

FSM_STATUS_BY_STATUS = {
    "planning": "Scheduled",
    "in-progress": "In Progress",
    "on-hold": "On Hold",
    "completed": "Completed",
    "cancelled": "Cancelled",
}
DEFAULT_FSM_STATUS = "Scheduled"

PROJECT_STATUS_BY_QUOTE_STATUS = {
    "draft": "planning",
    "pending": "planning",
    "approved": "in-progress",
    "accepted": "in-progress",
    "won": "in-progress",
    "on-hold": "on-hold",
    "completed": "completed",
    "invoiced": "completed",
    "lost": "cancelled",
    "cancelled": "cancelled",
    "rejected": "cancelled",
}
DEFAULT_PROJECT_STATUS = "planning"

PROJECT_PRIORITIES = ("low", "medium", "high", "urgent")
DEFAULT_PROJECT_PRIORITY = "medium"

DEAL_CLOSING_DAYS = 30


def crm_stage(status: Optional[str]) -> str:
    return CRM_STAGE_BY_STATUS.get(status or "", DEFAULT_CRM_STAGE)


def fsm_status(status: Optional[str]) -> str:
    return FSM_STATUS_BY_STATUS.get(status or "", DEFAULT_FSM_STATUS)


def project_status_from_quote(quote_status: Optional[str]) -> str:
    return PROJECT_STATUS_BY_QUOTE_STATUS.get((quote_status or "").lower(), DEFAULT_PROJECT_STATUS)


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if isinstance(value, date) else value


def project_to_crm_deal(project: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """CRM deal fields for a project. Closing date defaults to 30 days out."""
    today = today or date.today()
    closing = project.get("end_date") or today + timedelta(days=DEAL_CLOSING_DAYS)
    return {
        "Deal_Name": project.get("name"),
        "Stage": crm_stage(project.get("status")),
        "Amount": project.get("budget_amount"),
        "Closing_Date": _iso(closing),
        "Description": project.get("description"),
    }


def project_to_fsm_work_order(project: Dict[str, Any]) -> Dict[str, Any]:
    """Field-service work order fields for a project."""
    return {
        "Subject": project.get("name"),
        "Status": fsm_status(project.get("status")),
        "Priority": (project.get("priority") or DEFAULT_PROJECT_PRIORITY).capitalize(),
        "Scheduled_Start": _iso(project.get("start_date")),
        "Scheduled_End": _iso(project.get("end_date")),
        "Description": project.get("description"),
    }


def inventory_to_books_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Accounting-system item fields for an inventory item."""
    return {
        "name": item.get("name"),
        "sku": item.get("sku"),
        "unit": item.get("unit") or "pcs",
        "rate": item.get("unit_price"),
        "description": item.get("description") or "",
        "stock": item.get("quantity"),
    }


def quote_to_project_fields(quote: Dict[str, Any]) -> Dict[str, Any]:
    """Local Project fields for a quote fetched from the quoting system."""
    priority = (quote.get("priority") or DEFAULT_PROJECT_PRIORITY).lower()
    if priority not in PROJECT_PRIORITIES:
        priority = DEFAULT_PROJECT_PRIORITY
    fields = {
        "name": quote.get("name") or f"Quote {quote.get('id', '')}".strip(),
        "description": quote.get("description"),
        "status": project_status_from_quote(quote.get("status")),
        "priority": priority,
        "budget_amount": quote.get("total"),
    }
    for key in ("start_date", "end_date"):
        value = quote.get(key)
        if isinstance(value, str) and value:
            value = date.fromisoformat(value[:10])
        fields[key] = value or None
    return fields
