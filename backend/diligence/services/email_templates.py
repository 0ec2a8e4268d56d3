"""Built-in email bodies. Each builder returns (subject, html_body, text_body)."""

import os
from typing import Tuple

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@diligencelabs.xyz")

Email = Tuple[str, str, str]


def _wrap(heading: str, body_html: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #0f172a;">{heading}</h2>
        {body_html}
        <p style="color: #64748b; font-size: 12px;">
            Questions? Contact <a href="mailto:{SUPPORT_EMAIL}">{SUPPORT_EMAIL}</a>.
        </p>
    </div>
    """


def subscription_expiry_email(name: str, plan_name: str, days_remaining: int, period_end: str) -> Email:
    plural = "s" if days_remaining != 1 else ""
    subject = f"Your {plan_name} subscription ends in {days_remaining} day{plural}"
    link = f"{FRONTEND_URL}/dashboard/subscription"
    html = _wrap(
        "Subscription reminder",
        f"<p>Hi {name},</p>"
        f"<p>Your <strong>{plan_name}</strong> plan ends on {period_end} "
        f"({days_remaining} day{plural} from now).</p>"
        f"<p><a href=\"{link}\">Manage your subscription</a></p>",
    )
    text = (
        f"Hi {name},\n\nYour {plan_name} plan ends on {period_end} "
        f"({days_remaining} day{plural} from now).\n\nManage your subscription: {link}\n"
    )
    return subject, html, text


def expert_approved_email(name: str) -> Email:
    link = f"{FRONTEND_URL}/expert/dashboard"
    html = _wrap(
        "Welcome to the expert network",
        f"<p>Hi {name},</p>"
        "<p>Your expert application has been approved. You start at the Bronze tier "
        "with 100 reputation points.</p>"
        f"<p><a href=\"{link}\">Open your expert dashboard</a></p>",
    )
    text = (
        f"Hi {name},\n\nYour expert application has been approved. You start at the "
        f"Bronze tier with 100 reputation points.\n\nExpert dashboard: {link}\n"
    )
    return "Your expert application was approved", html, text


def expert_rejected_email(name: str, notes: str = "") -> Email:
    reason_html = f"<p>Reviewer notes: {notes}</p>" if notes else ""
    html = _wrap(
        "Expert application update",
        f"<p>Hi {name},</p>"
        "<p>Thank you for applying. We are unable to approve your expert application at this time.</p>"
        f"{reason_html}",
    )
    text = (
        f"Hi {name},\n\nThank you for applying. We are unable to approve your expert "
        "application at this time.\n" + (f"\nReviewer notes: {notes}\n" if notes else "")
    )
    return "Update on your expert application", html, text


def expert_info_requested_email(name: str, notes: str = "") -> Email:
    link = f"{FRONTEND_URL}/expert/application"
    html = _wrap(
        "More information needed",
        f"<p>Hi {name},</p>"
        "<p>Our reviewers need a little more information before deciding on your application.</p>"
        + (f"<p>{notes}</p>" if notes else "")
        + f"<p><a href=\"{link}\">Update your application</a></p>",
    )
    text = (
        f"Hi {name},\n\nOur reviewers need a little more information before deciding on "
        "your application.\n" + (f"\n{notes}\n" if notes else "") + f"\nUpdate your application: {link}\n"
    )
    return "More information needed for your expert application", html, text


def admin_message_email(name: str, subject: str, message: str) -> Email:
    paragraphs = "".join(f"<p>{line}</p>" for line in message.splitlines() if line.strip())
    html = _wrap(subject, f"<p>Hi {name},</p>{paragraphs}")
    text = f"Hi {name},\n\n{message}\n"
    return subject, html, text
