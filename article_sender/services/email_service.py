"""
Email service module for delivering the compiled document.

This module provides:
- AppleMailClient: sends through the local Mail app via osascript
- SMTPMailClient: sends via SMTP with STARTTLS
- DeliveryService: primary delivery to the reading device plus a confirmation
"""

import logging
import os
import smtplib
import subprocess
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)

SEND_TIMEOUT = 120

# Values arrive through argv, so no user text is ever spliced into the script.
_APPLESCRIPT = """
on run argv
    set theSubject to item 1 of argv
    set theBody to item 2 of argv
    set theRecipient to item 3 of argv
    set theAttachment to missing value
    if (count of argv) > 3 then set theAttachment to POSIX file (item 4 of argv)
    tell application "Mail"
        set msg to make new outgoing message with properties {subject:theSubject, content:theBody, visible:false}
        tell msg
            make new to recipient at end of to recipients with properties {address:theRecipient}
            if theAttachment is not missing value then
                tell content
                    make new attachment with properties {file name:theAttachment} at after the last paragraph
                end tell
            end if
        end tell
        send msg
    end tell
end run
"""


class MailClient(Protocol):
    """Protocol for anything that can send one message."""

    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: Optional[str] = None,
    ) -> bool:
        """Sends a message, returning True on success."""


class AppleMailClient:
    """Sends mail through the macOS Mail app."""

    def __init__(self, osascript: str = "osascript", timeout: float = SEND_TIMEOUT):
        self.osascript = osascript
        self.timeout = timeout

    def build_command(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: Optional[str] = None,
    ) -> List[str]:
        """Returns the argv for osascript."""
        command = [self.osascript, "-e", _APPLESCRIPT, subject, body, recipient]
        if attachment_path:
            command.append(os.path.abspath(attachment_path))
        return command

    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: Optional[str] = None,
    ) -> bool:
        """Runs the AppleScript; failures are logged and reported as False."""
        if attachment_path and not os.path.exists(attachment_path):
            logger.error("Attachment not found: %s", attachment_path)
            return False

        command = self.build_command(recipient, subject, body, attachment_path)
        try:
            subprocess.run(
                command,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            logger.error("Mail failed for %s: %s", recipient, (e.stderr or "").strip())
            return False
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error("Mail failed for %s: %s", recipient, e)
            return False
        logger.info("Email sent to %s.", recipient)
        return True


class SMTPMailClient:
    """Sends mail via an SMTP server."""

    def __init__(
        self,
        smtp_server: str,
        smtp_port: int,
        sender_email: str,
        sender_password: str,
        timeout: float = SEND_TIMEOUT,
    ):
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.sender_email = sender_email
        self.sender_password = sender_password
        self.timeout = timeout

    def build_message(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: Optional[str] = None,
    ) -> MIMEMultipart:
        """Builds the MIME message, attaching the file when given."""
        msg = MIMEMultipart()
        msg["From"] = self.sender_email
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain", "utf-8"))

        if attachment_path:
            with open(attachment_path, "rb") as f:
                part = MIMEApplication(f.read(), Name=os.path.basename(attachment_path))
            part["Content-Disposition"] = (
                f'attachment; filename="{os.path.basename(attachment_path)}"'
            )
            msg.attach(part)
        return msg

    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: Optional[str] = None,
    ) -> bool:
        """Sends the message; failures are logged and reported as False."""
        try:
            msg = self.build_message(recipient, subject, body, attachment_path)
            server = smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout)
            server.starttls()
            server.login(self.sender_email, self.sender_password)
            server.send_message(msg)
            server.quit()
            logger.info("Email sent to %s.", recipient)
            return True
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Email failed: %s", e)
            return False


class DeliveryService:
    """Sends the deliverable to the device, then a confirmation to a person."""

    def __init__(self, client: MailClient, device_address: str, notification_address: str):
        self.client = client
        self.device_address = device_address
        self.notification_address = notification_address

    @staticmethod
    def _title_list(titles: List[str]) -> str:
        return "\n".join(f"- {title}" for title in titles)

    def deliver(self, titles: List[str], attachment_path: str, site_name: str = "") -> bool:
        """
        Sends the primary delivery and, when it succeeds, the confirmation.

        Returns the outcome of the primary delivery; a failed confirmation is
        logged and does not change it.
        """
        label = f"{site_name} Articles".strip()
        primary_ok = self.client.send(
            self.device_address,
            label,
            f"Latest {label.lower()}:\n\n{self._title_list(titles)}",
            attachment_path,
        )
        if not primary_ok:
            logger.error("Delivery to %s failed.", self.device_address)
            return False

        if not self.notification_address:
            return True
        confirmed = self.client.send(
            self.notification_address,
            f"{label} Sent to Kindle",
            f"Sent {len(titles)} articles to your Kindle.\n\n"
            f"Articles:\n{self._title_list(titles)}\n\n"
            f"File: {attachment_path}",
        )
        if not confirmed:
            logger.warning("Confirmation to %s failed.", self.notification_address)
        return True
