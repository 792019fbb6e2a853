from gdpr.core.notify.senders import HttpRelaySender, NotificationSender, OutboxSender, SendResult, SmtpSender, build_sender
from gdpr.core.notify.templates import RenderedEmail, render

__all__ = ["HttpRelaySender", "NotificationSender", "OutboxSender", "SendResult", "SmtpSender", "build_sender", "RenderedEmail", "render"]
