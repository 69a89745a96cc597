"""HTML bodies for transactional email.

Templates use sentinel tokens (``__NAME__``) instead of ``str.format`` so the inline CSS
braces need no escaping. Every substituted value is HTML-escaped.
"""
from __future__ import annotations

import html as _html

_LAYOUT = """<!DOCTYPE html><html lang='en'>
<head>
    <meta charset='utf-8' />
    <meta name='viewport' content='width=device-width,initial-scale=1' />
    <title>__TITLE__</title>
    <style>
        body { margin:0; background:#f4f6fb; font-family: system-ui,-apple-system,"Segoe UI",Roboto,Arial,sans-serif; color:#0f172a; }
        .card { max-width:560px; margin:32px auto; background:#fff; border-radius:18px; border:1px solid #e2e8f0; overflow:hidden; }
        .bar { height:5px; background:linear-gradient(90deg,#6366f1,#ec4899,#06b6d4); }
        .body { padding:28px 32px; font-size:15px; line-height:1.55; }
        h1 { font-size:22px; margin:0 0 12px; }
        table { width:100%; border-collapse:collapse; margin:16px 0; }
        td { padding:6px 0; border-bottom:1px solid #f1f5f9; }
        td.k { color:#64748b; width:45%; }
        .btn { display:inline-block; background:#4f46e5; color:#fff; padding:10px 18px; border-radius:10px; text-decoration:none; font-weight:600; }
        footer { text-align:center; font-size:12px; color:#94a3b8; padding:0 0 24px; }
    </style>
</head>
<body>
    <div class='card'>
        <div class='bar'></div>
        <div class='body'>
            <h1>__TITLE__</h1>
            <p>__GREETING__</p>
            <p>__INTRO__</p>
            __ROWS__
            __ACTION__
        </div>
        <footer>Pet Tags &bull; Helping lost pets find their way home</footer>
    </div>
</body></html>"""


def _esc(v: object) -> str:
    return _html.escape(str(v)) if v is not None else ''


def _render(title: str, greeting: str, intro: str, rows: list[tuple[str, object]], action: tuple[str, str] | None = None) -> str:
    rows_html = ""
    if rows:
        rows_html = "<table>" + "".join(
            f"<tr><td class='k'>{_esc(k)}</td><td>{_esc(v)}</td></tr>" for k, v in rows
        ) + "</table>"
    action_html = ""
    if action:
        label, href = action
        action_html = f"<p><a class='btn' href='{_esc(href)}'>{_esc(label)}</a></p>"
    replacements = {
        '__TITLE__': _esc(title),
        '__GREETING__': _esc(greeting),
        '__INTRO__': _esc(intro),
        '__ROWS__': rows_html,
        '__ACTION__': action_html,
    }
    out = _LAYOUT
    for k, v in replacements.items():
        out = out.replace(k, v)
    return out


def order_confirmation(*, customer_name: str, order_number: str, pet_name: str, quantity: int, order_date: str, total_amount: object, dashboard_url: str) -> tuple[str, str]:
    subject = "Order Confirmation - Pet Tags"
    body = _render(
        "Thank you for your order!",
        f"Hi {customer_name or 'there'},",
        "Your payment was received and your pet's tag is being prepared.",
        [
            ("Order number", order_number),
            ("Pet", pet_name),
            ("Quantity", quantity),
            ("Order date", order_date),
            ("Total", total_amount),
        ],
        ("View your pets", dashboard_url),
    )
    return subject, body


def subscription_notification(*, customer_name: str, action: str, plan_type: str, amount: object, valid_until: str, payment_date: str) -> tuple[str, str]:
    subject = f"Subscription {action} Confirmation - Pet Tags"
    body = _render(
        f"Subscription {action.lower()}",
        f"Hi {customer_name or 'there'},",
        "Your tag coverage is active. Finders can reach you whenever your pet's tag is scanned.",
        [
            ("Plan", plan_type.capitalize()),
            ("Amount", amount),
            ("Payment date", payment_date),
            ("Valid until", valid_until),
        ],
    )
    return subject, body


def tag_activated(*, owner_name: str, pet_name: str, qr_code: str, activated_at: str, profile_url: str | None) -> tuple[str, str]:
    subject = "Your pet's QR tag is now active - Pet Tags"
    body = _render(
        "Your tag is active!",
        f"Hi {owner_name or 'there'},",
        f"The tag for {pet_name or 'your pet'} has been verified. Anyone who scans it will now see your pet's profile.",
        [("Tag", qr_code), ("Activated", activated_at)],
        ("Open profile", profile_url) if profile_url else None,
    )
    return subject, body


def reward_unlocked(*, customer_name: str, reward_name: str, points: int) -> tuple[str, str]:
    subject = f"You unlocked a reward: {reward_name} - Pet Tags"
    body = _render(
        "Reward unlocked",
        f"Hi {customer_name or 'there'},",
        "Thanks for being part of the community. Our team will be in touch about delivery.",
        [("Reward", reward_name), ("Points", points)],
    )
    return subject, body
