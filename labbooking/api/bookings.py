from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from labbooking.core.exceptions import BookingValidationError
from labbooking.core.logger import logger
from labbooking.models.booking_models import BookingSubmission, DisplayContext
from labbooking.services.booking_service import BookingService
from labbooking.services.validation_service import validate_booking_submission

router = APIRouter()

_booking_service: Optional[BookingService] = None

def get_booking_service() -> BookingService:
    global _booking_service
    if _booking_service is None:
        _booking_service = BookingService()
    return _booking_service

@router.get("/labs/{lab_id}/slots")
async def get_slots(lab_id: str, day: str, service: BookingService = Depends(get_booking_service)):
    try:
        availability = await service.get_time_slots(lab_id, day)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return availability.model_dump(by_alias=True, mode="json")

@router.get("/labs/{lab_id}/bookings")
async def list_bookings(
    lab_id: str,
    context: DisplayContext = DisplayContext.DEFAULT,
    service: BookingService = Depends(get_booking_service),
):
    bookings = await service.list_lab_bookings(lab_id, context)
    return {"labId": lab_id, "bookings": [b.model_dump(by_alias=True, mode="json") for b in bookings]}

@router.post("/bookings/validate")
async def validate_booking(submission: BookingSubmission):
    result = validate_booking_submission(submission)
    return result.model_dump(by_alias=True)

@router.post("/labs/{lab_id}/bookings", status_code=201)
async def request_booking(
    lab_id: str,
    submission: BookingSubmission,
    service: BookingService = Depends(get_booking_service),
):
    submission = submission.model_copy(update={"lab_id": lab_id})
    try:
        booking = await service.request_booking(submission)
    except BookingValidationError as e:
        raise HTTPException(status_code=422, detail={"isValid": False, "errors": e.errors})
    return booking.model_dump(by_alias=True, mode="json")

@router.post("/bookings/{reservation_key}/cancel")
async def cancel_booking(reservation_key: str, service: BookingService = Depends(get_booking_service)):
    booking = await service.cancel_booking(reservation_key)
    logger.info(f"✅ Cancellation of {reservation_key} accepted")
    return {"success": True, "booking": booking.model_dump(by_alias=True, mode="json")}

_TRANSITIONS = {
    "confirm": BookingService.confirm_booking,
    "deny": BookingService.deny_request,
    "cancel-request": BookingService.cancel_request,
    "in-use": BookingService.mark_in_use,
    "complete": BookingService.complete_booking,
    "collect": BookingService.collect_booking,
}

@router.post("/bookings/{reservation_key}/{action}")
async def transition_booking(reservation_key: str, action: str, service: BookingService = Depends(get_booking_service)):
    transition = _TRANSITIONS.get(action)
    if transition is None:
        raise HTTPException(status_code=404, detail=f"Unknown booking action '{action}'")
    booking = await transition(service, reservation_key)
    logger.info(f"✅ {action} of {reservation_key} accepted")
    return {"success": True, "booking": booking.model_dump(by_alias=True, mode="json")}

@router.get("/bookings/{reservation_key}")
async def get_booking(reservation_key: str, service: BookingService = Depends(get_booking_service)):
    overview = await service.get_booking_overview(reservation_key)
    return overview.model_dump(by_alias=True, mode="json")
