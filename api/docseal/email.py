import logging
import os
import re
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from html import escape

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("EMAIL_PORT", "587"))
SMTP_USER = os.getenv("EMAIL_USER")
SMTP_PASSWORD = os.getenv("EMAIL_PASSWORD")
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", SMTP_USER or "noreply@example.com")
DEFAULT_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "DocSeal")

_CARD_OPEN = """
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px; box-shadow: 0 10px 25px rgba(15,23,42,0.08);">
      <h2 style="margin-top: 0; font-size: 20px; color: #7C3AED;">DocSeal</h2>
"""
_CARD_CLOSE = """
    </div>
  </body>
</html>
"""

def format_sender_name(requester_name: str | None = None) -> str:
    base_label = (DEFAULT_SENDER_NAME or "DocSeal").strip() or "DocSeal"
    if requester_name:
        plain = requester_name.strip()
        if plain:
            return f"{plain} via {base_label}"
    return base_label

def pdf_filename(title: str) -> str:
    base = (title or "").strip() or "signed-document"
    return f"{re.sub(r'[^A-Za-z0-9_-]+', '_', base)}.pdf"

def send_email(
    to: str,
    subject: str,
    body: str,
    html_body: str | None = None,
    attachments: list | None = None,
    sender_name: str | None = None,
    reply_to: str | None = None,
):
    attachments = attachments or []
    display_name = (sender_name or DEFAULT_SENDER_NAME).strip()
    from_value = formataddr((display_name, DEFAULT_SENDER)) if display_name else DEFAULT_SENDER
    if not (SMTP_USER and SMTP_PASSWORD):
        logger.info(
            "email (stub) from=%s to=%s subject=%r attachments=%d\n%s",
            from_value, to, subject, len(attachments), body,
        )
        return
    msg = EmailMessage()
    msg["From"] = from_value
    if reply_to:
        msg["Reply-To"] = reply_to
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body or "")
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    for attachment in attachments:
        content = attachment.get("content")
        if content is None:
            continue
        msg.add_attachment(
            content,
            maintype=attachment.get("maintype", "application"),
            subtype=attachment.get("subtype", "octet-stream"),
            filename=attachment.get("filename") or "attachment",
        )
    with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as smtp:
        smtp.starttls()
        smtp.login(SMTP_USER, SMTP_PASSWORD)
        smtp.send_message(msg)

def notify(to: str, subject: str, body: str, **kwargs) -> bool:
    """Best-effort send; failures are logged and reported as False."""
    try:
        send_email(to, subject, body, **kwargs)
    except Exception:
        logger.exception("failed to send email to %s", to)
        return False
    return True

def signing_invite(document_title: str, sender_name: str, message: str, signing_url: str):
    subject = f"Please sign: {document_title}"
    text_body = f"""{sender_name} has requested your signature on:
{document_title}

{message}

Sign now: {signing_url}
"""
    quote = f'<p style="font-size: 14px; color: #666;">&ldquo;{escape(message)}&rdquo;</p>' if message else ""
    link_html = escape(signing_url)
    html_body = _CARD_OPEN + f"""
      <p style="font-size: 14px; color: #1e293b;"><strong>{escape(sender_name)}</strong> has requested your signature on:</p>
      <h3 style="color: #0f172a;">{escape(document_title)}</h3>
      {quote}
      <div style="margin: 24px 0;">
        <a href="{link_html}" style="display: inline-block; background: #7C3AED; color: #fff; padding: 12px 24px; border-radius: 8px; text-decoration: none; font-weight: 600;">
          Sign Now
        </a>
      </div>
      <p style="font-size: 12px; color: #64748b;">Or copy this link: <a href="{link_html}">{link_html}</a></p>
""" + _CARD_CLOSE
    return subject, text_body, html_body

def signed_notice(document_title: str, signer_email: str, sender_name: str, download_url: str | None):
    subject = f"Signed: {document_title}"
    download_line = f"Download signed PDF: {download_url}\n" if download_url else ""
    text_body = f"""The document {document_title} has been signed.
Signer: {signer_email}
Sender: {sender_name}
{download_line}
If the download link expires, contact the sender for a new copy.
"""
    download_html = (
        f'<p><a href="{escape(download_url)}" style="color: #7C3AED;">Download signed PDF</a></p>'
        if download_url else ""
    )
    html_body = _CARD_OPEN + f"""
      <p style="font-size: 14px; color: #1e293b;">The document <strong>{escape(document_title)}</strong> has been signed.</p>
      <p style="font-size: 13px; color: #475569;">Signer: {escape(signer_email)}</p>
      <p style="font-size: 13px; color: #475569;">Sender: {escape(sender_name)}</p>
      {download_html}
      <p style="color: #999; margin-top: 24px; font-size: 12px;">If the download link expires, contact the sender for a new copy.</p>
""" + _CARD_CLOSE
    return subject, text_body, html_body
