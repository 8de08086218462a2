import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from app.auth import (
    ADMIN_SESSION_COOKIE,
    ADMIN_SESSION_HOURS,
    check_admin_credentials,
    create_admin_session,
    require_admin,
)
from app.database import SessionLocal
from app.models import ServicePincode, Vendor
from app.pincode import is_valid_pincode

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_PINCODE = "Invalid pincode format. Must be a 6-digit number"


class LoginRequest(BaseModel):
    email: str
    password: str


class PincodeRequest(BaseModel):
    pincode: str = ""


def _list_pincodes(db):
    rows = db.query(ServicePincode).order_by(ServicePincode.created_at, ServicePincode.pincode).all()
    return [row.pincode for row in rows]


@router.post("/admin/login")
def admin_login(request: LoginRequest, response: Response):
    if not check_admin_credentials(request.email, request.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    response.set_cookie(
        ADMIN_SESSION_COOKIE,
        create_admin_session(request.email),
        max_age=ADMIN_SESSION_HOURS * 60 * 60,
        path="/",
        httponly=True,
        samesite="lax",
    )
    return {"success": True}


@router.post("/admin/logout")
def admin_logout(response: Response):
    response.delete_cookie(ADMIN_SESSION_COOKIE, path="/")
    return {"success": True}


@router.get("/admin")
def admin_dashboard(admin=Depends(require_admin)):
    db = SessionLocal()
    try:
        return {
            "admin": admin.get("sub"),
            "pincodes": db.query(ServicePincode).count(),
            "vendors": db.query(Vendor).count(),
            "active_vendors": db.query(Vendor).filter_by(status="active").count(),
        }
    finally:
        db.close()


@router.get("/api/admin/pincodes")
def get_pincodes(admin=Depends(require_admin)):
    db = SessionLocal()
    try:
        return {"pincodes": _list_pincodes(db)}
    finally:
        db.close()


@router.post("/api/admin/pincodes")
def add_pincode(request: PincodeRequest, admin=Depends(require_admin)):
    if not is_valid_pincode(request.pincode):
        raise HTTPException(status_code=400, detail=INVALID_PINCODE)

    db = SessionLocal()
    try:
        if db.get(ServicePincode, request.pincode) is None:
            db.add(ServicePincode(pincode=request.pincode))
            db.commit()
            logger.info("Added service pincode %s", request.pincode)
        return {
            "success": True,
            "message": f"Pincode {request.pincode} added successfully",
            "pincodes": _list_pincodes(db),
        }
    finally:
        db.close()


@router.delete("/api/admin/pincodes")
def remove_pincode(pincode: str = "", admin=Depends(require_admin)):
    if not pincode:
        raise HTTPException(status_code=400, detail="Pincode parameter is required")
    if not is_valid_pincode(pincode):
        raise HTTPException(status_code=400, detail=INVALID_PINCODE)

    db = SessionLocal()
    try:
        db.query(ServicePincode).filter_by(pincode=pincode).delete()
        db.commit()
        logger.info("Removed service pincode %s", pincode)
        return {
            "success": True,
            "message": f"Pincode {pincode} removed successfully",
            "pincodes": _list_pincodes(db),
        }
    finally:
        db.close()
