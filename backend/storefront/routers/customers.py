"""
Admin: customers, customer notes and per-customer email history.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from storefront.config import get_db
from storefront.core.security import get_current_staff
from storefront.repositories import customers as customers_repo
from storefront.repositories import email_logs
from storefront.repositories import orders as orders_repo
from storefront.schemas.customer import CustomerDetail, CustomerOut, EmailLogOut, NoteCreate, NoteOut
from storefront.schemas.principal import Principal
from storefront.services.orders_helpers import order_doc_to_out

router = APIRouter(prefix="/customers", tags=["Admin: Customers"], dependencies=[Depends(get_current_staff)])


def _customer_or_404(db, customer_id: str):
    customer = customers_repo.get(db, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@router.get("", response_model=List[CustomerOut])
def list_customers(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db=Depends(get_db),
):
    return customers_repo.list_customers(db, limit=limit, offset=offset)


@router.get("/{customer_id}", response_model=CustomerDetail)
def get_customer(customer_id: str, db=Depends(get_db)):
    customer = _customer_or_404(db, customer_id)
    orders = [order_doc_to_out(o) for o in orders_repo.list_for_customer(db, customer_id)]
    return CustomerDetail(**customer, orders=orders)


@router.get("/{customer_id}/emails", response_model=List[EmailLogOut])
def customer_email_history(customer_id: str, db=Depends(get_db)):
    customer = _customer_or_404(db, customer_id)
    return email_logs.list_for_recipient(db, customer["email"])


# ── Notes ────────────────────────────────────────────────────────────────────

@router.get("/{customer_id}/notes", response_model=List[NoteOut])
def list_notes(customer_id: str, db=Depends(get_db)):
    _customer_or_404(db, customer_id)
    return customers_repo.list_notes(db, customer_id)


@router.post("/{customer_id}/notes", response_model=NoteOut, status_code=status.HTTP_201_CREATED)
def add_note(
    customer_id: str,
    body: NoteCreate,
    principal: Principal = Depends(get_current_staff),
    db=Depends(get_db),
):
    _customer_or_404(db, customer_id)
    return customers_repo.add_note(db, customer_id, body.body, principal.display_name or principal.email or principal.uid)


def _note_or_404(db, customer_id: str, note_id: str):
    note = customers_repo.get_note(db, note_id)
    if not note or note.get("customer_id") != customer_id:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.put("/{customer_id}/notes/{note_id}", response_model=NoteOut)
def update_note(customer_id: str, note_id: str, body: NoteCreate, db=Depends(get_db)):
    _note_or_404(db, customer_id, note_id)
    return customers_repo.update_note(db, note_id, body.body)


@router.delete("/{customer_id}/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_note(customer_id: str, note_id: str, db=Depends(get_db)):
    _note_or_404(db, customer_id, note_id)
    customers_repo.delete_note(db, note_id)
