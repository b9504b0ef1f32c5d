"""
Operator alerts for integration-wide failures.
"""

import json
import logging
import smtplib
from datetime import datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Any, Optional, Callable

from ..core.config import SmtpSettings

logger = logging.getLogger(__name__)


class EmailAlerter:
    """
    Sends a plain-text e-mail when the integration needs an operator.

    Alerts with the same key are sent at most once per window.
    """

    def __init__(
        self,
        recipients: str,
        smtp: Optional[SmtpSettings] = None,
        window_seconds: int = 3600,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.recipients = [r.strip() for r in recipients.split(",") if r.strip()]
        self.smtp = smtp or SmtpSettings()
        self.window = timedelta(seconds=window_seconds)
        self.clock = clock
        self._last_sent: Dict[str, datetime] = {}

    def alert(self, subject: str, body: str, key: Optional[str] = None,
              metadata: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send an alert.

        Returns:
            True if an e-mail went out, False if it was suppressed or failed
        """
        now = self.clock()
        dedupe_key = key or subject
        last = self._last_sent.get(dedupe_key)
        if last is not None and now - last < self.window:
            logger.info(f"Alert suppressed (sent {now - last} ago): {subject}")
            return False

        if not self.recipients:
            logger.error(f"ALERT (no recipients configured): {subject} - {body}")
            return False

        msg = MIMEMultipart()
        msg['From'] = self.smtp.from_email
        msg['To'] = ', '.join(self.recipients)
        msg['Subject'] = f"[CRM Bridge] {subject}"

        text = f"""
{body}

Timestamp: {now.strftime('%Y-%m-%d %H:%M:%S')} UTC

Details:
{json.dumps(metadata or {}, indent=2, default=str)}
"""
        msg.attach(MIMEText(text, 'plain'))

        try:
            with smtplib.SMTP(self.smtp.host, self.smtp.port) as server:
                if self.smtp.use_tls:
                    server.starttls()
                if self.smtp.username:
                    server.login(self.smtp.username, self.smtp.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send alert e-mail '{subject}': {e}")
            return False

        self._last_sent[dedupe_key] = now
        logger.info(f"Alert e-mail sent: {subject}")
        return True
