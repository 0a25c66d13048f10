"""
Typed query builders for the receivables tables.

Every builder takes the tenant explicitly; services never assemble
filters by hand.
"""
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, Query

from app.modules.drivers.models import Driver, active_retail_filter
from app.modules.receivables.models import (
    ReceivableRecord, CustomerReceivable, ReceivableStatus,
)
from app.modules.receivables.schemas import ReceivableRecordFilters, CustomerReceivableFilters


def active_retail_drivers(db: Session, tenant_id: UUID) -> Query:
    return active_retail_filter(
        db.query(Driver).filter(Driver.tenant_id == tenant_id)
    ).order_by(Driver.name)


def receivable_records(db: Session, tenant_id: UUID,
                       filters: Optional[ReceivableRecordFilters] = None) -> Query:
    query = db.query(ReceivableRecord).filter(ReceivableRecord.tenant_id == tenant_id)
    if filters:
        if filters.driver_id:
            query = query.filter(ReceivableRecord.driver_id == filters.driver_id)
        if filters.start_date:
            query = query.filter(ReceivableRecord.date >= filters.start_date)
        if filters.end_date:
            query = query.filter(ReceivableRecord.date <= filters.end_date)
    return query


def driver_chain(db: Session, tenant_id: UUID, driver_id: UUID) -> Query:
    """All records of one driver in carry-forward order."""
    return db.query(ReceivableRecord).filter(
        ReceivableRecord.tenant_id == tenant_id,
        ReceivableRecord.driver_id == driver_id,
    ).order_by(ReceivableRecord.date.asc(), ReceivableRecord.created_at.asc(), ReceivableRecord.id.asc())


def record_on(db: Session, tenant_id: UUID, driver_id: UUID, day: date) -> Query:
    return db.query(ReceivableRecord).filter(
        ReceivableRecord.tenant_id == tenant_id,
        ReceivableRecord.driver_id == driver_id,
        ReceivableRecord.date == day,
    )


def latest_record_before(db: Session, tenant_id: UUID, driver_id: UUID, day: date) -> Query:
    """Most recent record strictly before `day`."""
    return db.query(ReceivableRecord).filter(
        ReceivableRecord.tenant_id == tenant_id,
        ReceivableRecord.driver_id == driver_id,
        ReceivableRecord.date < day,
    ).order_by(ReceivableRecord.date.desc())


def latest_record(db: Session, tenant_id: UUID, driver_id: UUID,
                  as_of: Optional[date] = None) -> Query:
    query = db.query(ReceivableRecord).filter(
        ReceivableRecord.tenant_id == tenant_id,
        ReceivableRecord.driver_id == driver_id,
    )
    if as_of:
        query = query.filter(ReceivableRecord.date <= as_of)
    return query.order_by(ReceivableRecord.date.desc())


def latest_records_for_active_retail(db: Session, tenant_id: UUID, as_of: date) -> Query:
    """(ReceivableRecord, Driver) pairs: each ACTIVE RETAIL driver's newest record on or before as_of."""
    latest_dates = db.query(
        ReceivableRecord.driver_id.label("driver_id"),
        func.max(ReceivableRecord.date).label("max_date"),
    ).filter(
        ReceivableRecord.tenant_id == tenant_id,
        ReceivableRecord.date <= as_of,
    ).group_by(ReceivableRecord.driver_id).subquery()

    query = db.query(ReceivableRecord, Driver).join(
        latest_dates,
        (ReceivableRecord.driver_id == latest_dates.c.driver_id)
        & (ReceivableRecord.date == latest_dates.c.max_date),
    ).join(
        Driver, Driver.id == ReceivableRecord.driver_id,
    ).filter(
        ReceivableRecord.tenant_id == tenant_id,
        Driver.tenant_id == tenant_id,
    )
    return active_retail_filter(query).order_by(Driver.name)


def customer_receivables(db: Session, tenant_id: UUID,
                         filters: Optional[CustomerReceivableFilters] = None) -> Query:
    """Customer receivables of ACTIVE RETAIL drivers only."""
    query = active_retail_filter(
        db.query(CustomerReceivable).join(Driver, Driver.id == CustomerReceivable.driver_id).filter(
            CustomerReceivable.tenant_id == tenant_id,
            Driver.tenant_id == tenant_id,
        )
    )
    filters = filters or CustomerReceivableFilters()
    if filters.driver_id:
        query = query.filter(CustomerReceivable.driver_id == filters.driver_id)
    if filters.customer_id:
        query = query.filter(CustomerReceivable.customer_id == filters.customer_id)
    if filters.receivable_type:
        query = query.filter(CustomerReceivable.receivable_type == filters.receivable_type)
    if filters.status:
        query = query.filter(CustomerReceivable.status == filters.status)
    elif not filters.include_paid:
        query = query.filter(CustomerReceivable.status != ReceivableStatus.PAID)
    if filters.search:
        query = query.filter(CustomerReceivable.customer_name.ilike(f"%{filters.search}%"))
    return query


def outstanding_totals_by_driver(db: Session, tenant_id: UUID, driver_id: Optional[UUID] = None) -> Query:
    """(driver_id, receivable_type, Σ amount, Σ quantity, count) over non-PAID rows."""
    query = db.query(
        CustomerReceivable.driver_id,
        CustomerReceivable.receivable_type,
        func.coalesce(func.sum(CustomerReceivable.amount), 0),
        func.coalesce(func.sum(CustomerReceivable.quantity), 0),
        func.count(CustomerReceivable.id),
    ).filter(
        CustomerReceivable.tenant_id == tenant_id,
        CustomerReceivable.status != ReceivableStatus.PAID,
    )
    if driver_id:
        query = query.filter(CustomerReceivable.driver_id == driver_id)
    return query.group_by(CustomerReceivable.driver_id, CustomerReceivable.receivable_type)
