"""
Action Classifier

Derives the actions an assistant message performed on the storefront.
Three layers are tried in order and the first one that recognizes the
message wins:

1. Structured columns (TextChats / VoiceChats `action` + `actionType`)
2. A JSON object in the message content, optionally in a ```json fence
3. Substring matching on `"action":"<verb>"` for content that is not JSON

Navigation metadata (`pageUrl` on AiMessage rows) is always collected as a
redirect. Nothing in here raises on bad input: unreadable content simply
yields no actions.
"""
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from app.services.conversation_normalizer import Message
from app.services.purchase_attribution import PurchaseEvent, build_purchase_event
from app.utils.helpers import isoformat_or_none
from app.utils.url_parsing import find_first_url, normalize_url


class ActionCategory(str, Enum):
    MOVEMENT = "movement"
    CART = "cart"
    ORDERS = "orders"
    REDIRECT = "redirect"
    PURCHASE = "purchase"


CART_ACTIONS = frozenset({"add_to_cart", "get_cart", "delete_from_cart"})
ORDER_ACTIONS = frozenset({"get_order", "track_order", "return_order", "cancel_order", "exchange_order"})
MOVEMENT_ACTIONS = frozenset({"scroll", "highlight", "navigate", "fill_form", "fillForm", "click"})
PURCHASE_ACTIONS = frozenset({"add_to_cart", "purchase"})
KNOWN_VERBS = CART_ACTIONS | ORDER_ACTIONS | MOVEMENT_ACTIONS | PURCHASE_ACTIONS | {"redirect", "true"}

_KIND_ALIASES = {"fillForm": "fill_form"}

# "action":"scroll" style literals inside text that is not valid JSON
_ACTION_LITERAL = re.compile(r'"action"\s*:\s*"([A-Za-z_]+)"')
_FALLBACK_VERBS = ("scroll", "click", "purchase", "redirect")


@dataclass
class Action:
    category: ActionCategory
    kind: str
    thread_id: str
    message_id: Optional[str] = None
    created_at: Optional[datetime] = None
    url: Optional[str] = None
    scroll_to_text: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "category": self.category.value,
            "kind": self.kind,
            "threadId": self.thread_id,
            "messageId": self.message_id,
            "createdAt": isoformat_or_none(self.created_at),
        }
        if self.url:
            data["url"] = self.url
        if self.scroll_to_text:
            data["scrollToText"] = self.scroll_to_text
        if self.detail:
            data["detail"] = self.detail
        return data


@dataclass
class MessageClassification:
    """Everything one assistant message contributed"""
    actions: List[Action] = field(default_factory=list)
    redirect_urls: List[str] = field(default_factory=list)
    purchases: List[PurchaseEvent] = field(default_factory=list)
    scrolls: int = 0
    clicks: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.actions or self.redirect_urls or self.purchases)

    def category_counts(self) -> Dict[str, int]:
        counts = {category.value: 0 for category in ActionCategory}
        for action in self.actions:
            counts[action.category.value] += 1
        return counts


def try_parse_json(text: Any) -> Optional[Any]:
    """json.loads that answers None instead of raising."""
    if not isinstance(text, str) or not text.strip():
        return None
    try:
        return json.loads(text)
    except (ValueError, TypeError, RecursionError):
        return None


def strip_code_fence(content: str) -> str:
    """Remove a leading ```json (or bare ```) fence and its closing fence."""
    text = (content or "").strip()
    if not text.startswith("```"):
        return text
    text = text[3:]
    if text[:4].lower() == "json":
        text = text[4:]
    text = text.strip()
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _verb(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _embedded_object(content: str) -> Optional[Dict[str, Any]]:
    """Outermost {...} span of free text, if it parses as an object."""
    start, end = content.find("{"), content.rfind("}")
    if start == -1 or end <= start:
        return None
    parsed = try_parse_json(content[start:end + 1])
    return parsed if isinstance(parsed, dict) else None


class _Collector:
    """Builds a MessageClassification for one message."""

    def __init__(self, message: Message, thread_id: str):
        self.message = message
        self.thread_id = thread_id
        self.result = MessageClassification()

    def action(self, category: ActionCategory, kind: str, **kwargs) -> None:
        self.result.actions.append(Action(
            category=category,
            kind=kind,
            thread_id=self.thread_id,
            message_id=self.message.id,
            created_at=self.message.created_at,
            **kwargs,
        ))

    def movement(self, kind: str, **kwargs) -> None:
        kind = _KIND_ALIASES.get(kind, kind)
        self.action(ActionCategory.MOVEMENT, kind, **kwargs)
        if kind == "scroll":
            self.result.scrolls += 1
        else:
            self.result.clicks += 1

    def redirect(self, url: Any) -> None:
        url = _verb(url)
        if not url:
            return
        self.result.redirect_urls.append(url)
        self.action(ActionCategory.REDIRECT, "redirect", url=normalize_url(url))

    def purchase(self, kind: str, url: Any = None, product_id: Any = None, product_name: Any = None) -> None:
        event = build_purchase_event(
            self.thread_id,
            self.message.id,
            self.message.created_at,
            url=url,
            product_id=product_id,
            product_name=product_name,
        )
        self.result.purchases.append(event)
        detail = {k: v for k, v in (
            ("handle", event.handle),
            ("productId", event.product_id),
            ("productName", event.product_name),
        ) if v}
        self.action(ActionCategory.PURCHASE, kind, url=event.url, detail=detail)


def _structured_payload(action_type: Any) -> Dict[str, Any]:
    """Product detail carried in the actionType column."""
    if isinstance(action_type, Mapping):
        return dict(action_type)
    if not isinstance(action_type, str):
        return {}
    text = action_type.strip()
    if text.startswith("{"):
        parsed = try_parse_json(text)
        if isinstance(parsed, dict):
            return parsed
    if not text or text in KNOWN_VERBS:
        return {}
    return {"product_name": text}


def _classify_structured(message: Message, out: _Collector) -> bool:
    action = _verb(message.action)
    action_type = _verb(message.action_type)
    if not action and not action_type:
        return False

    found = False
    if action in CART_ACTIONS:
        out.action(ActionCategory.CART, action, detail=_action_type_detail(message.action_type))
        found = True

    movement_kind = None
    if action_type in MOVEMENT_ACTIONS:
        movement_kind = action_type
    elif action in MOVEMENT_ACTIONS:
        movement_kind = action
    if movement_kind:
        out.movement(movement_kind, scroll_to_text=message.scroll_to_text)
        found = True

    if action in ORDER_ACTIONS:
        out.action(ActionCategory.ORDERS, action, detail=_action_type_detail(message.action_type))
        found = True

    if action in PURCHASE_ACTIONS:
        payload = _structured_payload(message.action_type)
        out.purchase(
            action,
            url=_first(payload, "url", "product_url"),
            product_id=_first(payload, "product_id", "variant_id"),
            product_name=_first(payload, "product_name", "item_name", "title"),
        )
        found = True

    return found


def _action_type_detail(action_type: Any) -> Dict[str, Any]:
    if action_type in (None, ""):
        return {}
    if isinstance(action_type, str):
        parsed = try_parse_json(action_type.strip())
        if isinstance(parsed, dict):
            return parsed
    return {"actionType": action_type}


def _classify_json(content_obj: Dict[str, Any], out: _Collector) -> None:
    action = _verb(content_obj.get("action"))
    context = content_obj.get("action_context")
    if not isinstance(context, dict):
        context = {}

    if action == "redirect":
        out.redirect(context.get("url"))
    elif action in MOVEMENT_ACTIONS:
        out.movement(
            action,
            url=_verb(_first(context, "url")),
            scroll_to_text=_verb(_first(context, "exact_text", "css_selector", "text"))
            or out.message.scroll_to_text,
        )
    elif action in CART_ACTIONS:
        out.action(ActionCategory.CART, action, detail=context)
    elif action in ORDER_ACTIONS:
        out.action(ActionCategory.ORDERS, action, detail=context)
    elif action == "purchase":
        out.purchase(
            "purchase",
            url=_first(context, "url", "product_url"),
            product_id=_first(context, "product_id", "id"),
            product_name=_first(context, "product_name", "title"),
        )

    # Legacy replies carried the destination at the top level
    if "action" not in content_obj:
        out.redirect(_first(content_obj, "url", "redirect_url"))


def _classify_text(content: str, out: _Collector) -> None:
    verbs = set(_ACTION_LITERAL.findall(content))
    for verb in _FALLBACK_VERBS:
        if verb not in verbs:
            continue
        if verb in ("scroll", "click"):
            out.movement(verb)
        elif verb == "redirect":
            out.redirect(find_first_url(content))
        else:
            embedded = _embedded_object(content) or {}
            context = embedded.get("action_context")
            if not isinstance(context, dict):
                context = {}
            out.purchase(
                "purchase",
                url=find_first_url(content) or _first(context, "url", "product_url"),
                product_id=_first(context, "product_id", "id"),
                product_name=_first(context, "product_name", "title"),
            )


def classify_message(message: Message, thread_id: Optional[str] = None) -> MessageClassification:
    """Actions performed by one assistant message (empty for user messages)."""
    out = _Collector(message, thread_id or message.thread_id)
    if not message.is_assistant:
        return out.result

    if message.page_url:
        out.redirect(message.page_url)

    if _classify_structured(message, out):
        return out.result

    content = message.content or ""
    content_obj = try_parse_json(strip_code_fence(content))
    if isinstance(content_obj, dict):
        _classify_json(content_obj, out)
    else:
        _classify_text(content, out)
    return out.result
