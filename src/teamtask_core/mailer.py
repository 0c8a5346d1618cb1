"""Outgoing email collaborator.

Delivery itself is not part of this service: the default sender writes each
message to the log. Deployments plug in a real sender through
``create_app(email_sender=...)``.
"""
import logging

logger = logging.getLogger("teamtask-core.mailer")


class EmailSender:
    """Interface for sending a plain-text email."""

    def send(self, to: str, subject: str, body: str) -> None:
        raise NotImplementedError


class LoggingEmailSender(EmailSender):
    """Sender that logs messages instead of delivering them."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info(f"Email to {to}: {subject}\n{body}")


def otp_email(name: str, otp: str, expire_minutes: int) -> tuple[str, str]:
    """Subject and body for the registration code email."""
    subject = "Your verification code"
    body = (
        f"Hi {name},\n\n"
        f"Your verification code is {otp}.\n"
        f"It expires in {expire_minutes} minutes.\n\n"
        "If you did not request this code, you can ignore this email."
    )
    return subject, body


def password_email(name: str, email: str, password: str, app_base_url: str) -> tuple[str, str]:
    """Subject and body for the generated-password email."""
    subject = "Your account is ready"
    body = (
        f"Hi {name},\n\n"
        "Your email has been verified. You can now sign in with:\n\n"
        f"  Email: {email}\n"
        f"  Password: {password}\n\n"
        f"Sign in at {app_base_url}/login"
    )
    return subject, body


def team_invite_email(name: str, team_name: str, inviter_name: str, app_base_url: str) -> tuple[str, str]:
    """Subject and body for the added-to-team email."""
    subject = f"You have been added to {team_name}"
    body = (
        f"Hi {name},\n\n"
        f"{inviter_name} added you to the team {team_name}.\n\n"
        f"Open it at {app_base_url}/teams"
    )
    return subject, body


def send_email(sender: EmailSender, to: str, subject: str, body: str) -> None:
    """Send an email, logging and absorbing any delivery failure."""
    try:
        sender.send(to, subject, body)
        logger.info(f"Sent email '{subject}' to {to}")
    except Exception as e:
        logger.error(f"Failed to send email '{subject}' to {to}: {e}", exc_info=True)
