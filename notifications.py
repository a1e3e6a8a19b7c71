"""
Share-link email through Mailgun.

A link is only ever mailed for a transfer that is downloadable right now:
the same ready/expiry guard the download endpoints use runs first.
"""

import logging
from typing import List, Optional

import httpx

import config
from exceptions import ProviderFailure
from transfer_model import FileRecord
from transfers import TransferManager

logger = logging.getLogger(__name__)

SUBJECT = "Swift Transfer - Your files are ready"


class MailgunMailer:

    def __init__(
        self,
        api_key: Optional[str] = None,
        domain: Optional[str] = None,
        sender: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: float = config.MAILGUN_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or config.MAILGUN_API_KEY
        self.domain = domain or config.MAILGUN_DOMAIN
        self.sender = sender or config.MAILGUN_FROM
        self.api_base = (api_base or config.MAILGUN_API_BASE).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.domain)

    async def send(self, to: str, subject: str, text: str) -> None:
        if not self.configured:
            raise ProviderFailure("email", "Mailgun not configured (MAILGUN_API_KEY / MAILGUN_DOMAIN missing)")

        sender = self.sender or f"Swift Transfer <noreply@{self.domain}>"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_base}/{self.domain}/messages",
                    auth=("api", self.api_key),
                    data={"from": sender, "to": to, "subject": subject, "text": text},
                )
        except httpx.HTTPError as e:
            logger.error(f"Mailgun request failed: {e}")
            raise ProviderFailure("email", str(e)) from e

        if response.is_error:
            logger.error(f"Mailgun rejected message ({response.status_code}): {response.text}")
            raise ProviderFailure("email", response.text, status=response.status_code)


def format_share_message(share_url: str, files: List[FileRecord], message: Optional[str] = None) -> str:
    lines = [f"• {f.name or 'file'} ({round((f.size or 0) / 1024)} KB)" for f in files]

    text = f"You've received files via Swift Transfer.\n\nDownload link:\n{share_url}\n\n"
    if lines:
        text += "Files:\n" + "\n".join(lines) + "\n\n"
    if message:
        text += f"Message:\n{message}\n\n"
    return text + "This link may expire."


class ShareNotifier:

    def __init__(self, manager: TransferManager, mailer: MailgunMailer):
        self._manager = manager
        self._mailer = mailer

    async def send_share_email(self, transfer_id: str, to: str, message: Optional[str] = None) -> str:
        files = await self._manager.authorize_download(transfer_id)
        share_url = self._manager.settings.share_url(transfer_id)

        await self._mailer.send(to, SUBJECT, format_share_message(share_url, files, message))
        logger.info(f"Share email sent: id={transfer_id} files={len(files)}")
        return share_url
