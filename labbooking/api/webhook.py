from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from typing import Dict, Any

from labbooking.api.bookings import get_booking_service
from labbooking.core.logger import logger
from labbooking.core.security import verify_secret_token
from labbooking.services.booking_service import BookingService
from labbooking.services.event_service import ReservationEvent

router = APIRouter()

@router.post("/events", dependencies=[Depends(verify_secret_token)])
async def reservation_events(
    request: Request,
    service: BookingService = Depends(get_booking_service),
) -> Dict[str, Any]:
    """
    Receives change notifications from the reservation system of record.
    Accepts a single event or a list; malformed entries are logged and skipped
    so one bad event never makes the feed retry the whole batch.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")
    if isinstance(payload, list):
        raw_events = payload
    elif isinstance(payload, dict):
        raw_events = payload.get("events", [payload])
    else:
        logger.warning(f"⚠️ Rejected event payload of type {type(payload).__name__}")
        raise HTTPException(status_code=400, detail="Expected an event object or a list of events")
    if not isinstance(raw_events, list):
        raise HTTPException(status_code=400, detail="\"events\" must be a list")

    events = []
    for raw in raw_events:
        try:
            events.append(ReservationEvent.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"⚠️ Dropping malformed event {raw!r}: {e.error_count()} errors")

    handled = await service.events.handle_many(events)
    logger.info(f"🔔 Event batch processed: {handled}/{len(raw_events)} invalidated")
    return {"received": len(raw_events), "handled": handled}
