import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse

from app.auth import admin_login_redirect
from app.admin_routes import router as admin_router
from app.routes import router, order_store, get_paytm_config
from app.storefront_routes import router as storefront_router
from app.database import init_db
from app.paytm_service import map_gateway_status, validate_callback, verify_checksum

# Force-load .env (Windows-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

logger = logging.getLogger(__name__)


def setup_logging(level=None):
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


setup_logging()

app = FastAPI(title="Quick Commerce Storefront API")

app.include_router(router)
app.include_router(storefront_router)
app.include_router(admin_router)

init_db()


@app.middleware("http")
async def admin_session_gate(request: Request, call_next):
    target = admin_login_redirect(request.url.path, request.cookies)
    if target:
        return RedirectResponse(target, status_code=307)
    return await call_next(request)


@app.post("/api/paytm/callback")
async def paytm_callback(request: Request):
    form = await request.form()
    fields = {key: str(value) for key, value in form.items()}

    if not validate_callback(fields):
        logger.error("Invalid Paytm callback for order %s", fields.get("ORDERID"))
        raise HTTPException(status_code=400, detail="Invalid payment response")

    received = fields.pop("CHECKSUMHASH", "")
    config = get_paytm_config()
    if not verify_checksum(fields, received, config.merchant_key):
        logger.error("Checksum verification failed for order %s", fields["ORDERID"])
        raise HTTPException(status_code=400, detail="Checksum verification failed")

    order_id = fields["ORDERID"]
    order = order_store.get(order_id)
    if order is None:
        logger.error("Order not found: %s", order_id)
        raise HTTPException(status_code=404, detail="Order not found")

    status = map_gateway_status(fields["STATUS"])
    if order.status != status:
        order_store.set(order.with_status(
            status,
            txn_id=fields["TXNID"],
            bank_txn_id=fields.get("BANKTXNID"),
        ))
    if status != "pending":
        order_store.evict(order_id)

    logger.info("Payment %s for order %s", status, order_id)
    return {"success": True, "order_id": order_id, "status": status}


@app.get("/api/paytm/callback")
def paytm_callback_get():
    return JSONResponse(status_code=405, content={"success": False, "error": "Method not allowed"})
