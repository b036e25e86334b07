from .sqlite import Webhook, WebhookRepository

__all__ = ["Webhook", "WebhookRepository"]
