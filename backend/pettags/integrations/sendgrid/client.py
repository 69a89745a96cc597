import os

import requests

API_URL = "https://api.sendgrid.com/v3/mail/send"


def send_email(to: str, subject: str, html: str, *, text: str | None = None) -> None:
    api_key = os.getenv("SENDGRID_API_KEY")
    if not api_key:
        raise RuntimeError("SendGrid credentials are not configured")
    content = []
    if text:
        content.append({"type": "text/plain", "value": text})
    content.append({"type": "text/html", "value": html})
    body = {
        "personalizations": [{"to": [{"email": to}]}],
        "from": {
            "email": os.getenv("SENDGRID_FROM_EMAIL", "no-reply@pettags.local"),
            "name": os.getenv("SENDGRID_FROM_NAME", "Pet Tags"),
        },
        "subject": subject,
        "content": content,
    }
    resp = requests.post(API_URL, json=body, headers={"Authorization": f"Bearer {api_key}"}, timeout=15)
    try:
        resp.raise_for_status()
    except requests.HTTPError as e:
        try:
            errors = (resp.json() or {}).get("errors") or []
            details = "SendGrid API error: " + "; ".join(str(err.get("message")) for err in errors)
        except Exception:
            details = f"HTTP {resp.status_code}: {resp.text[:500]}"
        raise RuntimeError(details) from e
