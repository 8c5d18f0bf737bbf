import resend
from config import config
from logging_config import get_logger

logger = get_logger("email")

if config.RESEND_API_KEY:
    resend.api_key = config.RESEND_API_KEY


def send_email(to_email: str, subject: str, html_content: str):
    """
    Send one email through Resend.
    Without RESEND_API_KEY the send is logged and skipped.
    """
    if not config.RESEND_API_KEY:
        logger.warning(f"Resend API key not configured, skipping email", extra={"data": {"to": to_email, "subject": subject}})
        return None

    try:
        response = resend.Emails.send({
            "from": config.MAIL_FROM,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        })
        logger.info(f"Email sent", extra={"data": {"to": to_email, "email_id": response.get("id")}})
        return response
    except Exception as e:
        # Runs as a background task; a failed send must not surface to the caller
        logger.error(f"Failed to send email to {to_email}: {e}", exc_info=True)
        return None


def render_email(title: str, body_html: str, cta_url: str = None, cta_text: str = None) -> str:
    cta_html = ""
    if cta_url and cta_text:
        cta_html = f"""
        <p style="text-align: center; margin: 32px 0;">
            <a href="{cta_url}" style="background-color: #2563eb; color: #ffffff; padding: 12px 24px; text-decoration: none; border-radius: 6px; font-weight: 600;">{cta_text}</a>
        </p>"""

    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{title}</title></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #f3f4f6; margin: 0; padding: 32px 16px;">
    <div style="max-width: 560px; margin: 0 auto; background-color: #ffffff; border-radius: 10px; overflow: hidden;">
        <div style="background-color: #111827; padding: 20px; text-align: center;">
            <h1 style="color: #ffffff; font-size: 22px; margin: 0;">CollabHub</h1>
        </div>
        <div style="padding: 32px; color: #374151; line-height: 1.6;">
            {body_html}
            {cta_html}
        </div>
    </div>
</body>
</html>"""


def send_invitation_email(to_email: str, inviter_name: str, project_name: str, role: str, frontend_url: str):
    subject = f"{inviter_name} invited you to {project_name} on CollabHub"
    body_html = f"""
        <h2 style="color: #111827; font-size: 18px; margin-top: 0;">You have a project invitation</h2>
        <p><strong>{inviter_name}</strong> invited you to join <strong>{project_name}</strong> as a <strong>{role.title()}</strong>.</p>
        <p>Accepting gives you access to the project's tasks and its team chat.</p>
    """
    html_content = render_email(
        title="Project Invitation",
        body_html=body_html,
        cta_url=f"{frontend_url}/invitations",
        cta_text="View Invitation",
    )
    return send_email(to_email, subject, html_content)
