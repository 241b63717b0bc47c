"""
Conversation Data Service - loads raw conversation and catalog rows

Reads the three conversation shapes for one website and time window and
hands them to the normalizer as plain dict rows. Messages are fetched with
one IN query per table rather than one query per thread.
"""
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models.conversation import (
    AiMessage,
    AiThread,
    TextChat,
    TextConversation,
    VoiceChat,
    VoiceConversation,
)
from app.models.shopify import ShopifyProduct, ShopifyProductVariant
from app.models.website import ChatSession, Website
from app.services.conversation_normalizer import Thread, normalize_threads
from app.services.purchase_attribution import CatalogItem, catalog_from_rows
from app.utils.helpers import chunk_list
from app.utils.logger import log

Rows = List[Tuple[Dict[str, Any], List[Dict[str, Any]]]]

# Keeps IN (...) parameter lists under SQLite's bound-variable limit
_IN_CHUNK = 500


class ConversationDataService:
    """Row provider for the analytics engine"""

    def __init__(self, db: Session):
        self.db = db

    def get_website(self, website_id: str) -> Optional[Website]:
        return self.db.query(Website).filter(Website.id == website_id).first()

    def load_threads(self, website_id: str, since: Optional[datetime] = None) -> List[Thread]:
        """Every non-empty conversation of a website, normalized."""
        ai_rows = self.fetch_ai_threads(website_id, since)
        text_rows = self.fetch_text_conversations(website_id, since)
        voice_rows = self.fetch_voice_conversations(website_id, since)

        threads = normalize_threads(
            ai_threads=ai_rows,
            text_conversations=text_rows,
            voice_conversations=voice_rows,
            since=since,
        )
        log.debug(
            f"Loaded {len(threads)} threads for website {website_id} "
            f"(ai={len(ai_rows)}, text={len(text_rows)}, voice={len(voice_rows)})"
        )
        return threads

    def fetch_ai_threads(self, website_id: str, since: Optional[datetime] = None) -> Rows:
        query = self.db.query(AiThread).filter(AiThread.website_id == website_id)
        if since is not None:
            query = query.filter(AiThread.last_message_at >= since)
        headers = query.order_by(AiThread.last_message_at.desc()).all()

        messages = self._messages_by_parent(
            AiMessage, AiMessage.thread_id, [t.id for t in headers], since
        )
        return [
            (
                {
                    "id": t.id,
                    "title": t.title,
                    "created_at": t.created_at,
                    "last_message_at": t.last_message_at,
                },
                [
                    {
                        "id": m.id,
                        "role": m.role,
                        "content": m.content,
                        "type": m.type,
                        "page_url": m.page_url,
                        "scroll_to_text": m.scroll_to_text,
                        "created_at": m.created_at,
                    }
                    for m in messages.get(t.id, [])
                ],
            )
            for t in headers
        ]

    def fetch_text_conversations(self, website_id: str, since: Optional[datetime] = None) -> Rows:
        return self._fetch_chat_conversations(
            TextConversation, TextChat, TextChat.text_conversation_id, website_id, since
        )

    def fetch_voice_conversations(self, website_id: str, since: Optional[datetime] = None) -> Rows:
        return self._fetch_chat_conversations(
            VoiceConversation, VoiceChat, VoiceChat.voice_conversation_id, website_id, since
        )

    def _fetch_chat_conversations(self, conversation_model, chat_model, parent_column, website_id, since) -> Rows:
        last_activity = func.coalesce(
            conversation_model.most_recent_conversation_at, conversation_model.created_at
        )
        query = (
            self.db.query(conversation_model)
            .join(ChatSession, conversation_model.session_id == ChatSession.id)
            .filter(ChatSession.website_id == website_id)
        )
        if since is not None:
            query = query.filter(or_(
                conversation_model.most_recent_conversation_at >= since,
                conversation_model.created_at >= since,
            ))
        headers = query.order_by(last_activity.desc()).all()

        chats = self._messages_by_parent(chat_model, parent_column, [c.id for c in headers], since)
        return [
            (
                {
                    "id": c.id,
                    "created_at": c.created_at,
                    "most_recent_conversation_at": c.most_recent_conversation_at,
                },
                [
                    {
                        "id": m.id,
                        "message_type": m.message_type,
                        "content": m.content,
                        "action": m.action,
                        "action_type": m.action_type,
                        "created_at": m.created_at,
                    }
                    for m in chats.get(c.id, [])
                ],
            )
            for c in headers
        ]

    def _messages_by_parent(self, model, parent_column, parent_ids: Sequence[str], since) -> Dict[str, List[Any]]:
        grouped: Dict[str, List[Any]] = defaultdict(list)
        for chunk in chunk_list(list(parent_ids), _IN_CHUNK):
            query = self.db.query(model).filter(parent_column.in_(chunk))
            if since is not None:
                query = query.filter(model.created_at >= since)
            for row in query.order_by(model.created_at.asc()).all():
                grouped[getattr(row, parent_column.key)].append(row)
        return grouped

    def fetch_catalog(self, website_id: str) -> List[CatalogItem]:
        """Priced catalog for revenue attribution (empty for non-Shopify sites)."""
        products = (
            self.db.query(ShopifyProduct.id, ShopifyProduct.handle, ShopifyProduct.title)
            .filter(ShopifyProduct.website_id == website_id)
            .all()
        )
        if not products:
            return []

        variants = []
        for chunk in chunk_list([p.id for p in products], _IN_CHUNK):
            variants.extend(
                self.db.query(ShopifyProductVariant.product_id, ShopifyProductVariant.price)
                .filter(ShopifyProductVariant.product_id.in_(chunk))
                .order_by(
                    ShopifyProductVariant.position.asc().nulls_last(),
                    ShopifyProductVariant.shopify_id.asc().nulls_last(),
                    ShopifyProductVariant.id.asc(),
                )
                .all()
            )

        return catalog_from_rows(
            [{"id": p.id, "handle": p.handle, "title": p.title} for p in products],
            [{"product_id": v.product_id, "price": v.price} for v in variants],
        )
