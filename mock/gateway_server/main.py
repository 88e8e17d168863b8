from fastapi import FastAPI, HTTPException
from itertools import count
from typing import Any, Dict

app = FastAPI(title="Mock Payment Gateway", version="1.0.0")
PAYMENTS: Dict[str, Dict[str, Any]] = {}
_ids = count(1000)


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/v1/payments", status_code=201)
def create_payment(body: Dict[str, Any]):
    payment_id = str(next(_ids))
    payment = {
        "id": payment_id,
        "status": "pending",
        "status_detail": "pending_waiting_payment",
        "transaction_amount": body.get("transaction_amount"),
        "payment_method_id": body.get("payment_method_id"),
        "external_reference": body.get("external_reference"),
    }
    if body.get("payment_method_id") == "pix":
        payment["point_of_interaction"] = {
            "transaction_data": {"qr_code": f"00020126-MOCK-{payment_id}", "qr_code_base64": "TU9DSw=="}
        }
    else:
        payment["barcode"] = {"content": f"23790000000000{payment_id}"}
        payment["transaction_details"] = {"external_resource_url": f"http://localhost:8002/boleto/{payment_id}"}
    PAYMENTS[payment_id] = payment
    return payment


@app.get("/v1/payments/{payment_id}")
def get_payment(payment_id: str):
    if payment_id not in PAYMENTS:
        raise HTTPException(status_code=404, detail="payment not found")
    return PAYMENTS[payment_id]


# Local runs: flip a payment's status, then POST the webhook to the engine by hand
@app.post("/mock/payments/{payment_id}/status")
def set_status(payment_id: str, status: str, status_detail: str | None = None):
    if payment_id not in PAYMENTS:
        raise HTTPException(status_code=404, detail="payment not found")
    PAYMENTS[payment_id].update(status=status, status_detail=status_detail)
    return PAYMENTS[payment_id]


@app.post("/checkout/preferences", status_code=201)
def create_preference(body: Dict[str, Any]):
    preference_id = f"pref-{next(_ids)}"
    return {"id": preference_id, "init_point": f"http://localhost:8002/checkout/{preference_id}"}
