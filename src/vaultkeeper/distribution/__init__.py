"""Delivery of encrypted key shares to trustees."""

from .distributor import Delivery, DeliveryFailure, DistributionReport, ShareDistributor
from .mailer import Mailer, SMTPMailer
from .messages import MessageTemplate, ShareMessage

__all__ = [
    "Delivery",
    "DeliveryFailure",
    "DistributionReport",
    "Mailer",
    "MessageTemplate",
    "SMTPMailer",
    "ShareDistributor",
    "ShareMessage",
]
