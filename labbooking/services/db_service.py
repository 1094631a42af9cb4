from supabase import create_async_client, AsyncClient
from typing import List, Optional
import uuid

from labbooking.core.config import settings
from labbooking.core.exceptions import CommitError
from labbooking.core.logger import logger
from labbooking.models.booking_models import Booking, bookings_from_records
from labbooking.services.status_service import BookingState, encode_status_code

def _to_records(rows) -> list:
    # The table primary key is internal; bookings are identified by reservation_key
    return [{**row, "id": row.get("reservation_key")} for row in rows or []]

class ReservationStore:
    """
    Remote source of truth for reservations.

    Reads log and degrade to empty results; writes raise CommitError so a
    coordinated update can report the failure to its caller.
    """
    _instance = None
    _client: AsyncClient = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ReservationStore, cls).__new__(cls)
        return cls._instance

    async def get_client(self):
        if not self._client:
            try:
                if settings.SUPABASE_URL and settings.SUPABASE_KEY:
                    self._client = await create_async_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
                    logger.info("✅ Supabase Async client initialized")
                else:
                    logger.warning("⚠️ Supabase credentials missing")
            except Exception as e:
                logger.error(f"❌ Failed to initialize Supabase Async: {e}")
        return self._client

    async def get_lab_bookings(self, lab_id: str) -> List[Booking]:
        """
        Returns every reservation of a lab, cancelled ones included.
        """
        client = await self.get_client()
        if not client:
            return []

        try:
            response = await client.table('reservations').select("*").eq('lab_id', str(lab_id)).execute()
            return bookings_from_records(_to_records(response.data))
        except Exception as e:
            logger.error(f"❌ DB Error (get_lab_bookings): {e}")
            return []

    async def get_reservation(self, reservation_key: str) -> Optional[Booking]:
        client = await self.get_client()
        if not client:
            return None

        try:
            response = await client.table('reservations').select("*").eq('reservation_key', reservation_key).limit(1).execute()
            bookings = bookings_from_records(_to_records(response.data))
            if bookings:
                return bookings[0]
        except Exception as e:
            logger.error(f"❌ DB Error (get_reservation): {e}")

        return None

    async def create_reservation(self, lab_id: str, start: int, end: int, user_account: str, purpose: str) -> str:
        """
        Inserts a reservation request. Returns its reservation key.
        """
        client = await self.get_client()
        if not client:
            raise CommitError("Reservation store is not available")

        reservation_key = uuid.uuid4().hex
        row = {
            'reservation_key': reservation_key,
            'lab_id': str(lab_id),
            'start': start,
            'end': end,
            'user_account': user_account,
            'purpose': purpose,
            'status': encode_status_code(BookingState.PENDING),
        }

        try:
            response = await client.table('reservations').insert(row).execute()
        except Exception as e:
            logger.error(f"❌ DB Error (create_reservation): {e}")
            raise CommitError(f"Could not create reservation: {e}") from e

        if not response.data:
            raise CommitError("Reservation insert returned no data")
        logger.info(f"🆕 Reservation {reservation_key} requested for lab {lab_id}")
        return reservation_key

    async def update_status(self, reservation_key: str, state: BookingState) -> str:
        """
        Moves a reservation to a new lifecycle state. Returns the reservation key.
        """
        code = encode_status_code(state)
        if code is None:
            raise CommitError(f"State {state.value} cannot be stored in the configured status table")

        client = await self.get_client()
        if not client:
            raise CommitError("Reservation store is not available")

        try:
            response = await client.table('reservations').update({'status': code}).eq('reservation_key', reservation_key).execute()
        except Exception as e:
            logger.error(f"❌ DB Error (update_status): {e}")
            raise CommitError(f"Could not update reservation {reservation_key}: {e}") from e

        if not response.data:
            raise CommitError(f"Reservation {reservation_key} not found")
        logger.info(f"✏️ Reservation {reservation_key} -> {state.value}")
        return reservation_key

    async def cancel_reservation(self, reservation_key: str) -> str:
        return await self.update_status(reservation_key, BookingState.CANCELLED)

db_service = ReservationStore()
