"""Log filters for contact-detail masking and correlation ID defaults."""

import logging
import re

# Identity fields that come from the auth provider and may be an email or phone number
_IDENTITY_FIELDS = ("actor_id", "rider_id", "driver_id")


class PIIFilter(logging.Filter):
    """Masks emails and phone numbers in messages, arguments and identity fields.

    Actor ids are issued by the external identity provider and riders type
    cancellation reasons freely, so either can carry contact details.
    Digits inside identifiers (ride_<hex>) and decimals are left alone.
    """

    EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+")
    PHONE_PATTERN = re.compile(
        r"(?<![\w.])\+?(?:\d{1,3}[-.\s]?)?\d{3}[-.\s]?\d{3}[-.\s]?\d{4}(?![\w])"
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                self.mask(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        for field in _IDENTITY_FIELDS:
            value = getattr(record, field, None)
            if isinstance(value, str):
                setattr(record, field, self.mask(value))
        return True

    def mask(self, text: str) -> str:
        if "@" in text:
            text = self.EMAIL_PATTERN.sub("[EMAIL]", text)
        if any(c.isdigit() for c in text):
            text = self.PHONE_PATTERN.sub("[PHONE]", text)
        return text


class DefaultCorrelationFilter(logging.Filter):
    """Adds default correlation_id if not present."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True
