from fastapi import HTTPException, Header
from labbooking.core.config import settings
from labbooking.core.logger import logger

async def verify_secret_token(x_secret_token: str = Header(None)):
    """
    Verify the secret token sent by the external change-notification feed.
    Validation is skipped when no SECRET_KEY is configured.
    """
    if not settings.SECRET_KEY:
        return True

    if x_secret_token != settings.SECRET_KEY:
        logger.warning("⚠️ Rejected event webhook call with invalid secret token")
        raise HTTPException(status_code=403, detail="Invalid secret token")
    return True
