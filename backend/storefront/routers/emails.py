"""
Admin: email log, template overrides and test sends.

Templates are the built-in Jinja2 defaults unless a document in
`email_templates/{name}` overrides them.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from jinja2 import TemplateSyntaxError

from storefront.config import get_db
from storefront.core.deps import get_mailer
from storefront.core.security import get_current_staff, require_admin
from storefront.repositories import email_logs
from storefront.schemas.customer import EmailLogOut
from storefront.schemas.email import EmailTemplateIn, EmailTemplateOut, EmailTestBody
from storefront.services.email_templates import DEFAULT_TEMPLATES
from storefront.services.mailer import Mailer, template_env

router = APIRouter(prefix="/emails", tags=["Admin: Emails"], dependencies=[Depends(get_current_staff)])

SAMPLE_CONTEXT = {
    "order_number": "GGD-00000000",
    "customer_name": "Sample Customer",
    "customer_email": "customer@example.com",
    "items": [{"name": "Roller door spring", "quantity": 1, "line_total": "89.00"}],
    "total": "89.00",
    "currency": "AUD",
    "status": "processing",
    "paypal_transaction_id": "SAMPLE-TXN",
    "tracking_number": "000000000000",
    "tracking_url": "https://auspost.com.au/mypost/track/details/000000000000",
    "refund_amount": "89.00",
    "dispute_id": "PP-D-0000",
    "reason": "sample",
    "admin_link": "#",
}


@router.get("/logs", response_model=List[EmailLogOut])
def list_email_logs(limit: int = Query(100, ge=1, le=500), db=Depends(get_db)):
    return email_logs.list_logs(db, limit=limit)


@router.get("/templates", response_model=List[EmailTemplateOut])
def list_email_templates(db=Depends(get_db)):
    overrides = {t["id"]: t for t in email_logs.list_templates(db)}
    out = []
    for name, (subject, html) in DEFAULT_TEMPLATES.items():
        o = overrides.get(name)
        if o:
            out.append(EmailTemplateOut(
                name=name, subject=o["subject"], html=o["html"],
                is_active=o.get("is_active", True), is_default=False, updated_at=o.get("updated_at"),
            ))
        else:
            out.append(EmailTemplateOut(name=name, subject=subject, html=html, is_default=True))
    return out


@router.put("/templates/{name}", response_model=EmailTemplateOut, dependencies=[Depends(require_admin)])
def save_email_template(name: str, body: EmailTemplateIn, db=Depends(get_db)):
    if name not in DEFAULT_TEMPLATES:
        raise HTTPException(status_code=404, detail="Unknown template")
    try:
        template_env.from_string(body.subject)
        template_env.from_string(body.html)
    except TemplateSyntaxError as e:
        raise HTTPException(status_code=400, detail=f"Template syntax error (line {e.lineno}): {e.message}")

    saved = email_logs.upsert_template(db, name, body.subject, body.html, body.is_active)
    return EmailTemplateOut(
        name=name, subject=saved["subject"], html=saved["html"],
        is_active=saved.get("is_active", True), updated_at=saved.get("updated_at"),
    )


@router.post("/test")
async def send_test_email(body: EmailTestBody, mailer: Mailer = Depends(get_mailer)):
    template = body.template or "test"
    if template not in DEFAULT_TEMPLATES:
        raise HTTPException(status_code=404, detail="Unknown template")
    result = await mailer.send_template(str(body.to), template, SAMPLE_CONTEXT, metadata={"test": True})
    return {"success": result.success, "log_id": result.log_id, "error": result.error}
