import smtplib
import logging
from decimal import Decimal
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

from pricewatch.config import Settings

logger = logging.getLogger('notification')


def format_price(currency: str, amount: Decimal) -> str:
    return f"{currency}{Decimal(amount).quantize(Decimal('0.01'))}"


class EmailNotifier:
    """Sends price-drop alerts over SMTP. Delivery is best-effort."""

    def __init__(self, smtp_host: str = "smtp.gmail.com", smtp_port: int = 465,
                 smtp_user: Optional[str] = None, smtp_password: Optional[str] = None,
                 use_ssl: bool = True, from_address: Optional[str] = None, timeout: float = 15.0):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_ssl = use_ssl
        self.from_address = from_address or smtp_user
        self.timeout = timeout

        if not self.configured:
            logger.warning("SMTP credentials not configured. Email notifications will not work.")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            use_ssl=settings.smtp_use_ssl,
            from_address=settings.notify_from
        )

    @property
    def configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    def build_message(self, to_address: str, title: str, old_price: Decimal, new_price: Decimal,
                      currency: str, url: str) -> MIMEMultipart:
        old_text = format_price(currency, old_price)
        new_text = format_price(currency, new_price)

        text_content = (
            f'Good news! The price for "{title}" has dropped from {old_text} to {new_text}.\n\n'
            f"Check it out here: {url}"
        )
        html_content = f"""
        <div style="font-family: sans-serif; padding: 20px; color: #333;">
            <h2 style="color: #10b981;">Price Drop Alert!</h2>
            <p>Good news! The price for <strong>{title}</strong> has dropped.</p>
            <div style="background: #f3f4f6; padding: 15px; border-radius: 8px; margin: 20px 0;">
                <p style="margin: 0; font-size: 14px; color: #6b7280;">Old Price: <del>{old_text}</del></p>
                <p style="margin: 5px 0 0 0; font-size: 24px; font-weight: bold; color: #10b981;">New Price: {new_text}</p>
            </div>
            <a href="{url}" style="display: inline-block; background: #10b981; color: white; padding: 10px 20px; border-radius: 6px; text-decoration: none; font-weight: bold;">View Product</a>
            <p style="margin-top: 20px; font-size: 12px; color: #9ca3af;">You are receiving this because you tracked this product on PriceWatch.</p>
        </div>
        """

        msg = MIMEMultipart('alternative')
        msg['Subject'] = f"Price Drop Alert: {title}"
        msg['From'] = self.from_address
        msg['To'] = to_address
        msg.attach(MIMEText(text_content, 'plain'))
        msg.attach(MIMEText(html_content, 'html'))
        return msg

    def send_price_drop(self, to_address: str, title: str, old_price: Decimal, new_price: Decimal,
                        currency: str, url: str) -> bool:
        if not to_address:
            return False

        if not self.configured:
            logger.error("SMTP credentials not configured. Cannot send price drop alert.")
            return False

        try:
            msg = self.build_message(to_address, title, old_price, new_price, currency, url)

            if self.use_ssl:
                server = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)

            with server as smtp:
                if not self.use_ssl:
                    smtp.starttls()
                smtp.login(self.smtp_user, self.smtp_password)
                smtp.send_message(msg)

            logger.info(f"Price drop alert for '{title}' sent to {to_address}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send price drop alert to {to_address}: {e}")
            return False
