"""Local records that are pushed to the remote systems."""
from datetime import date, datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from fieldsync.timeutil import utcnow


class Project(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    status: str = "planning"  # "planning", "in-progress", "on-hold", "completed", "cancelled"
    priority: str = "medium"  # "low", "medium", "high", "urgent"
    budget_amount: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    # Originating quote in the quoting system
    quotewerks_id: Optional[str] = Field(default=None, unique=True, index=True)

    # Remote ids cached after a successful create
    zoho_crm_id: Optional[str] = None
    zoho_crm_sync_at: Optional[datetime] = None
    zoho_fsm_id: Optional[str] = None
    zoho_fsm_sync_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class InventoryItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    sku: str = Field(index=True)
    unit: str = "pcs"
    unit_price: float = 0.0
    description: Optional[str] = None
    quantity: int = 0

    zoho_books_id: Optional[str] = None
    zoho_books_sync_at: Optional[datetime] = None
