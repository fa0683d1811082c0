import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from zhinao_geo.api.deps import get_settings
from zhinao_geo.core.database import get_db
from zhinao_geo.core.settings import Settings
from zhinao_geo.models.contact_inquiry import ContactInquiry
from zhinao_geo.schemas.inquiry import InquiryRequest
from zhinao_geo.services.inquiry_mail import MailDispatchError, send_inquiry_notification

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/inquiries", status_code=201)
def create_inquiry(
    body: InquiryRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    inquiry = ContactInquiry(
        name=body.name,
        company=body.company,
        website=body.website or None,
        phone=body.phone,
        message=body.message or None,
        status="new",
    )
    db.add(inquiry)
    db.commit()
    db.refresh(inquiry)

    notified = True
    try:
        send_inquiry_notification(
            settings,
            name=inquiry.name,
            company=inquiry.company,
            phone=inquiry.phone,
            website=inquiry.website,
            message=inquiry.message,
        )
    except MailDispatchError as exc:
        # the inquiry is stored; sales can still pick it up from the table
        logger.warning("inquiries.notify.failed id=%s error=%s", inquiry.id, exc)
        notified = False
    return {"id": inquiry.id, "status": inquiry.status, "notified": notified}
