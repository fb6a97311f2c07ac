"""External effect collaborators and their dispatcher."""

from .dispatcher import DispatchResult, DispatchStatus, EffectDispatcher
from .messages import HttpMessageSender, MessageSender
from .webhooks import RetryStrategy, WebhookCaller, WebhookResult

__all__ = [
    "DispatchResult",
    "DispatchStatus",
    "EffectDispatcher",
    "HttpMessageSender",
    "MessageSender",
    "RetryStrategy",
    "WebhookCaller",
    "WebhookResult",
]
