"""Notification templates and formatting."""

from html import escape
from typing import Optional


MESSAGES = {
    "status_updated_title": 'Complaint "{title}" status updated to {status}',
    "status_updated_body": 'Your complaint "{title}" has been updated to: {status}.',
    "status_updated_fallback": "Check your complaint for details",
    "admin_replied_title": 'Admin replied to "{title}"',
    "status_email_subject": "Complaint Update: {title}",
    "status_sms": (
        'Hi {student_name}, your urgent complaint "{title}" has been updated to: '
        "{status}. Please check your email for details."
    ),
    "emergency_call": (
        "Emergency alert. This is an automated call regarding complaint "
        "{complaint_code}: {title}. Please check your complaint portal immediately."
    ),
    "emergency_call_subject": "Emergency Call",
    "announcement_title": "\U0001F4E2 {title}",
    "new_complaint_title": "New complaint: {title}",
    "new_complaint_body": "From {student_name} - {category}",
    "activity_title": "New update on your complaint",
    "urgent_tag": "[URGENT]",
}

STATUS_EMAIL_HTML = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h1 style="color: #333; border-bottom: 2px solid #4F46E5; padding-bottom: 10px;">Complaint Status Update</h1>
  <p>Dear {student_name},</p>
  <p>Your complaint <strong>"{title}"</strong> has been updated.</p>
  <div style="background-color: #F3F4F6; padding: 15px; border-radius: 8px; margin: 20px 0;">
    <p style="margin: 5px 0;"><strong>New Status:</strong> <span style="color: #4F46E5;">{status}</span></p>
    {remarks_block}
  </div>
  <p>You can view the full details of your complaint by logging into your account.</p>
  <p style="color: #666; font-size: 14px; margin-top: 30px;">Best regards,<br>Student Grievance System Team</p>
</div>
""".strip()

REMARKS_HTML = """<p style="margin: 5px 0;"><strong>Admin Response:</strong></p>
    <p style="margin: 5px 0; padding: 10px; background-color: white; border-radius: 4px;">{remarks}</p>"""

ANNOUNCEMENT_EMAIL_HTML = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #4F46E5 0%, #7C3AED 100%); padding: 20px; border-radius: 8px 8px 0 0;">
    <h1 style="color: white; margin: 0; font-size: 24px;">New Announcement</h1>
  </div>
  <div style="background-color: #F9FAFB; padding: 20px; border-radius: 0 0 8px 8px;">
    <h2 style="color: #333; margin-top: 0;">{title}</h2>
    <div style="background-color: white; padding: 15px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #4F46E5;">
      <p style="margin: 0; color: #555; line-height: 1.6;">{message}</p>
    </div>
    <p style="color: #666; font-size: 14px; margin-top: 30px;">Log in to your account to view more details.</p>
    <p style="color: #999; font-size: 12px; margin-top: 20px; border-top: 1px solid #E5E7EB; padding-top: 15px;">
      This is an automated message from the Student Grievance System.
    </p>
  </div>
</div>
""".strip()


def truncate(text: str, limit: int = 100) -> str:
    """Shorten ``text`` for toast descriptions."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


class NotificationTemplate:
    """Base class for notification templates."""

    def format_message(self, key: str, **kwargs) -> str:
        """Format a catalog message.

        Args:
            key: Message key in ``MESSAGES``
            **kwargs: Placeholder values

        Returns:
            Formatted message
        """
        return MESSAGES[key].format(**kwargs)


class ComplaintNotificationTemplate(NotificationTemplate):
    """Template for complaint-related notifications."""

    def status_updated_title(self, title: str, status: str) -> str:
        return self.format_message("status_updated_title", title=title, status=status)

    def status_updated_body(self, title: str, status: str) -> str:
        return self.format_message("status_updated_body", title=title, status=status)

    def status_description(self, admin_remarks: Optional[str]) -> str:
        """Toast description for a status change."""
        return admin_remarks or self.format_message("status_updated_fallback")

    def admin_replied_title(self, title: str) -> str:
        return self.format_message("admin_replied_title", title=title)

    def status_email_subject(self, title: str) -> str:
        return self.format_message("status_email_subject", title=title)

    def status_email_html(
        self,
        student_name: Optional[str],
        title: str,
        status: str,
        admin_remarks: Optional[str] = None,
    ) -> str:
        """Format the HTML status update email.

        Args:
            student_name: Name used in the greeting
            title: Complaint title
            status: New complaint status
            admin_remarks: Admin response, rendered only when non-empty

        Returns:
            HTML body with every interpolated value escaped
        """
        remarks_block = ""
        if admin_remarks:
            remarks_block = REMARKS_HTML.format(remarks=escape(admin_remarks))
        return STATUS_EMAIL_HTML.format(
            student_name=escape(student_name or "Student"),
            title=escape(title),
            status=escape(status),
            remarks_block=remarks_block,
        )

    def status_sms(self, student_name: Optional[str], title: str, status: str) -> str:
        return self.format_message(
            "status_sms",
            student_name=student_name or "there",
            title=title,
            status=status,
        )

    def emergency_call(self, complaint_code: str, title: str) -> str:
        """Spoken message for the emergency voice call."""
        return self.format_message(
            "emergency_call",
            complaint_code=complaint_code,
            title=title,
        )

    def emergency_call_subject(self) -> str:
        return self.format_message("emergency_call_subject")

    def activity_title(self) -> str:
        return self.format_message("activity_title")


class AnnouncementNotificationTemplate(NotificationTemplate):
    """Template for announcements."""

    def title(self, title: str) -> str:
        return self.format_message("announcement_title", title=title)

    def email_html(self, title: str, message: str) -> str:
        return ANNOUNCEMENT_EMAIL_HTML.format(title=escape(title), message=escape(message))


class AdminAlertTemplate(NotificationTemplate):
    """Template for admin alerts."""

    def new_complaint_title(self, title: str) -> str:
        return self.format_message("new_complaint_title", title=title)

    def new_complaint_body(self, student_name: Optional[str], category: Optional[str]) -> str:
        return self.format_message(
            "new_complaint_body",
            student_name=student_name or "Unknown student",
            category=category or "Other",
        )


def add_urgent_tag(message: str) -> str:
    """Add urgent tag to message.

    Args:
        message: Original message

    Returns:
        Message with urgent tag prepended
    """
    return f"{MESSAGES['urgent_tag']} {message}"
