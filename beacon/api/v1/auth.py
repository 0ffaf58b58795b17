import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.database import get_db
from beacon.core.logging_buffer import logging_buffer
from beacon.core.security import verify_password, create_access_token
from beacon.models.admin import Admin
from beacon.schemas.auth import LoginRequest, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(req: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    client_ip = request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")
    result = await db.execute(select(Admin).where(Admin.username == req.username))
    admin = result.scalar_one_or_none()
    if not admin or not admin.is_active or not verify_password(req.password, admin.password_hash):
        logger.warning("Dashboard login rejected for %s from %s", req.username, client_ip)
        logging_buffer.add("error", f"Login rejected: {req.username}", {"ip": client_ip})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    admin.last_login_at = datetime.now(timezone.utc)
    admin.last_login_ip = client_ip[:64]
    await db.commit()

    token = create_access_token({"sub": str(admin.id), "username": admin.username, "role": "admin"})
    logging_buffer.add("processing", f"Login: {admin.username}", {"ip": client_ip})
    return TokenResponse(access_token=token)
