"""Out-of-band delivery of one-time codes."""

from twofactor.delivery.base import CompositeChannel, DeliveryChannel
from twofactor.delivery.email import SmtpEmailSender
from twofactor.delivery.sms import HttpSmsGateway

__all__ = ["CompositeChannel", "DeliveryChannel", "HttpSmsGateway", "SmtpEmailSender"]
