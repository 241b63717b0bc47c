"""Database models for the Voicero analytics engine"""

from app.models.website import Website, ChatSession

from app.models.conversation import (
    AiThread,
    AiMessage,
    TextConversation,
    TextChat,
    VoiceConversation,
    VoiceChat
)

from app.models.shopify import ShopifyProduct, ShopifyProductVariant
