"""
External integrations: web push delivery and the AI completion provider.
"""

from guardian.core.integrations.ai_chat import AIChatClient, AIChatError, get_ai_chat_client
from guardian.core.integrations.push import DeliveryResult, PushNotifier, get_push_notifier

__all__ = [
    "AIChatClient",
    "AIChatError",
    "DeliveryResult",
    "PushNotifier",
    "get_ai_chat_client",
    "get_push_notifier",
]
