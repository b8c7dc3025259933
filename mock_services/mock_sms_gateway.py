"""
mock_sms_gateway.py — Mock Implementation of the SMS Gateway (Twilio REST API)

This module provides a simulated SMS gateway for running the storefront service locally.
It exposes a simple FastAPI application that mimics the Twilio Messages endpoint.

Simulation Scenarios:
    • Successful delivery
    • Invalid recipient (HTTP 400), for numbers containing "0000000"
    • Missing basic auth credentials (HTTP 401)

Endpoints:
    POST /2010-04-01/Accounts/{account_sid}/Messages.json

Port:
    Default: 8003 (HTTP)
"""

import logging
import uuid

from fastapi import Depends, FastAPI, Form, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

app = FastAPI(title="Mock SMS Gateway")
security = HTTPBasic()
logging.basicConfig(level=logging.INFO)


@app.post("/2010-04-01/Accounts/{account_sid}/Messages.json", status_code=201)
def create_message(
        account_sid: str,
        To: str = Form(...),
        From: str = Form(...),
        Body: str = Form(...),
        credentials: HTTPBasicCredentials = Depends(security),
):
    """
    Accepts a message for delivery.

    Returns:
        dict: Message resource with `sid` and `status` "queued".

    Raises:
        HTTPException(401): Account sid in the URL does not match the credentials.
        HTTPException(400): Simulated invalid recipient.
    """
    if credentials.username != account_sid:
        raise HTTPException(status_code=401, detail={"code": 20003, "message": "Authenticate"})

    if "0000000" in To:
        logging.warning(f"[SMS] Invalid recipient {To}.")
        raise HTTPException(status_code=400, detail={"code": 21211, "message": f"Invalid 'To' Phone Number: {To}"})

    sid = f"SM{uuid.uuid4().hex}"
    logging.info(f"[SMS] {From} → {To}: {Body} (sid {sid})")
    return {"sid": sid, "status": "queued", "to": To, "from": From, "body": Body}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8003)
