import os

import requests

API_URL = "https://api.twilio.com/2010-04-01"


def send_message(to: str, body: str, *, channel: str = "sms") -> dict:
    """Send an SMS or WhatsApp message. Returns the Twilio message resource.

    Raises RuntimeError with the API error details on failure.
    """
    sid = os.getenv("TWILIO_ACCOUNT_SID")
    token = os.getenv("TWILIO_AUTH_TOKEN")
    if not sid or not token:
        raise RuntimeError("Twilio credentials are not configured")
    if channel == "whatsapp":
        sender = os.getenv("TWILIO_WHATSAPP_NUMBER") or os.getenv("TWILIO_PHONE_NUMBER")
        if not sender:
            raise RuntimeError("Twilio WhatsApp number is not configured")
        data = {"From": f"whatsapp:{sender}", "To": f"whatsapp:{to}", "Body": body}
    else:
        sender = os.getenv("TWILIO_PHONE_NUMBER")
        if not sender:
            raise RuntimeError("Twilio phone number is not configured")
        data = {"From": sender, "To": to, "Body": body}
    resp = requests.post(f"{API_URL}/Accounts/{sid}/Messages.json", data=data, auth=(sid, token), timeout=15)
    try:
        resp.raise_for_status()
    except requests.HTTPError as e:
        try:
            payload = resp.json()
            details = f"Twilio API error (code={payload.get('code')}): {payload.get('message') or e}"
        except Exception:
            details = f"HTTP {resp.status_code}: {resp.text[:500]}"
        raise RuntimeError(details) from e
    return resp.json()
