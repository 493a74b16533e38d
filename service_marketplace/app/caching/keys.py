"""
Cache key schemes and invalidation scopes per resource family.

List keys embed a canonical JSON rendering of the filters so that the same
query written with a different parameter order maps to the same entry.
Mutations clear the whole resource namespace plus tags scoped to the ids
they touched.
"""

import json
from typing import Any, Iterable, Mapping, Optional

from .store import CacheStore


LIST_TTL = 30.0
DETAIL_TTL = 60.0
STATS_TTL = 300.0

ORDERS_NAMESPACE = "orders"
CHATS_NAMESPACE = "chats"
MESSAGES_NAMESPACE = "messages"
NOTIFICATIONS_NAMESPACE = "notifications"

ORDER_STATS_TAG = "order-stats"


def canonical_filters(filters: Optional[Mapping[str, Any]] = None) -> str:
    """Serialize filters with sorted keys, ignoring unset (None) values."""
    present = {name: value for name, value in (filters or {}).items() if value is not None}
    return json.dumps(present, sort_keys=True, separators=(",", ":"), default=str)


def generate_order_cache_key(filters: Optional[Mapping[str, Any]] = None) -> str:
    return f"{ORDERS_NAMESPACE}:list:{canonical_filters(filters)}"


def generate_order_detail_key(order_id: str) -> str:
    return f"{ORDERS_NAMESPACE}:detail:{order_id}"


def generate_order_stats_key() -> str:
    return f"{ORDERS_NAMESPACE}:stats"


def generate_chat_cache_key(user_id: Optional[str] = None) -> str:
    if user_id is None:
        return f"{CHATS_NAMESPACE}:list:{canonical_filters()}"
    return f"{CHATS_NAMESPACE}:user:{user_id}"


def generate_message_cache_key(chat_id: str) -> str:
    return f"{MESSAGES_NAMESPACE}:chat:{chat_id}"


def generate_notification_cache_key(user_id: Optional[str] = None) -> str:
    if user_id is None:
        return f"{NOTIFICATIONS_NAMESPACE}:list:{canonical_filters()}"
    return f"{NOTIFICATIONS_NAMESPACE}:user:{user_id}"


def order_tag(order_id: str) -> str:
    return f"order-{order_id}"


def user_tag(user_id: str) -> str:
    return f"user-{user_id}"


def chat_tag(chat_id: str) -> str:
    return f"chat-{chat_id}"


def invalidate_orders(cache: CacheStore, order_id: Optional[str] = None) -> int:
    """Drop every cached order read, and anything tagged with ``order_id``."""
    removed = cache.delete_namespace(ORDERS_NAMESPACE)
    if order_id is not None:
        removed += cache.delete_by_tag(order_tag(order_id))
    return removed


def invalidate_chats(
    cache: CacheStore,
    chat_id: Optional[str] = None,
    participant_ids: Iterable[str] = (),
) -> int:
    removed = cache.delete_namespace(CHATS_NAMESPACE)
    if chat_id is not None:
        removed += cache.delete_by_tag(chat_tag(chat_id))
    for participant_id in participant_ids:
        removed += cache.delete_by_tag(user_tag(participant_id))
    return removed


def invalidate_messages(cache: CacheStore, chat_id: str) -> int:
    """Messages feed the chat list (last message, unread counts) as well."""
    removed = cache.delete_by_tag(chat_tag(chat_id))
    removed += cache.delete_namespace(MESSAGES_NAMESPACE)
    removed += cache.delete_namespace(CHATS_NAMESPACE)
    return removed


def invalidate_notifications(cache: CacheStore, user_id: Optional[str] = None) -> int:
    removed = cache.delete_namespace(NOTIFICATIONS_NAMESPACE)
    if user_id is not None:
        removed += cache.delete_by_tag(user_tag(user_id))
    return removed
