"""
Marketplace service: job orders, chats, messages and notifications.
"""

from typing import Any, Callable, Dict, Optional

from fastapi import Query, Request

from shared.base_service import BaseService
from shared.errors import NotFoundError, ValidationError

from .adapters.document_store import InMemoryDocumentStore
from .caching.keys import (
    CHATS_NAMESPACE,
    DETAIL_TTL,
    LIST_TTL,
    MESSAGES_NAMESPACE,
    NOTIFICATIONS_NAMESPACE,
    ORDER_STATS_TAG,
    ORDERS_NAMESPACE,
    STATS_TTL,
    chat_tag,
    generate_chat_cache_key,
    generate_message_cache_key,
    generate_notification_cache_key,
    generate_order_cache_key,
    generate_order_detail_key,
    generate_order_stats_key,
    invalidate_chats,
    invalidate_messages,
    invalidate_notifications,
    order_tag,
    user_tag,
)
from .caching.middleware import cache_response, invalidate_cache
from .caching.store import CacheStore
from .domain.models import (
    ChatCreateRequest,
    MessageCreateRequest,
    NotificationCreateRequest,
    OrderCreateRequest,
    OrderStatus,
    OrderUpdateRequest,
)


ORDERS = "orders"
CHATS = "chats"
MESSAGES = "messages"
NOTIFICATIONS = "notifications"

ORDER_FILTERS = ("status", "category", "customerId", "workerId")


def _order_filters(request: Request) -> Dict[str, Optional[str]]:
    return {name: request.query_params.get(name) for name in ORDER_FILTERS}


def _user_tags(request: Request):
    user_id = request.query_params.get("userId")
    return [user_tag(user_id)] if user_id else []


class MarketplaceService(BaseService):
    """Marketplace service implementation."""

    def __init__(
        self,
        cache: Optional[CacheStore] = None,
        documents: Optional[InMemoryDocumentStore] = None,
    ):
        super().__init__("marketplace", 5000)

        # One cache per process, handed to every route group.
        self.cache = cache or CacheStore(
            self.config.cache_default_ttl,
            cleanup_interval=self.config.cache_cleanup_interval,
        )
        self.documents = documents or InMemoryDocumentStore()

        @self.app.on_event("startup")
        async def _startup():
            await self.cache.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.cache.stop()

        self._setup_order_routes()
        self._setup_chat_routes()
        self._setup_message_routes()
        self._setup_notification_routes()
        self._setup_cache_admin_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.marketplace_service = self

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"cache": "ok", "document_store": "ok"}

    def _cache_hook(self, metric_name: str, namespace: str) -> Callable[[Request, Any], None]:
        """Build an on_hit/on_miss hook feeding the cache counters."""

        def hook(request: Request, payload: Any) -> None:
            self.metrics.increment_counter(metric_name, namespace=namespace)

        return hook

    def _cached(self, namespace: str, **options):
        return cache_response(
            self.cache,
            namespace=namespace,
            on_hit=self._cache_hook("cache_hits_total", namespace),
            on_miss=self._cache_hook("cache_misses_total", namespace),
            **options,
        )

    def _invalidates(self, **options):
        return invalidate_cache(self.cache, on_invalidate=self._record_invalidation, **options)

    def _record_invalidation(self, kind: str, count: int) -> None:
        self.metrics.increment_counter("cache_invalidations_total", count, kind=kind)

    def _setup_order_routes(self):
        """Set up order routes."""

        @self.app.get("/api/orders")
        @self._cached(
            ORDERS_NAMESPACE,
            ttl=LIST_TTL,
            tags=[ORDERS_NAMESPACE],
            key_generator=lambda request: generate_order_cache_key(_order_filters(request)),
        )
        async def list_orders(
            request: Request,
            status: Optional[OrderStatus] = Query(None),
            category: Optional[str] = Query(None),
            customer_id: Optional[str] = Query(None, alias="customerId"),
            worker_id: Optional[str] = Query(None, alias="workerId"),
        ):
            """List orders, optionally filtered."""
            filters = {
                "status": status.value if status else None,
                "category": category,
                "customerId": customer_id,
                "workerId": worker_id,
            }
            return await self.documents.find(ORDERS, filters, sort_by="createdAt", descending=True)

        @self.app.get("/api/orders/stats")
        @self._cached(
            ORDERS_NAMESPACE,
            ttl=STATS_TTL,
            tags=[ORDERS_NAMESPACE, ORDER_STATS_TAG],
            key_generator=lambda request: generate_order_stats_key(),
        )
        async def order_stats(request: Request):
            """Aggregate order counts and completed revenue."""
            orders = await self.documents.find(ORDERS)
            by_status: Dict[str, int] = {}
            by_category: Dict[str, int] = {}
            revenue = 0.0
            for order in orders:
                status = order.get("status")
                category = order.get("category")
                by_status[status] = by_status.get(status, 0) + 1
                by_category[category] = by_category.get(category, 0) + 1
                if status == OrderStatus.COMPLETED.value:
                    revenue += order.get("price") or 0

            return {
                "total": len(orders),
                "by_status": by_status,
                "by_category": by_category,
                "completed_revenue": revenue,
            }

        @self.app.get("/api/orders/{order_id}")
        async def get_order(order_id: str):
            """Get a single order."""
            cache_key = generate_order_detail_key(order_id)
            cached_order = self.cache.get(cache_key)
            if cached_order is not None:
                self.metrics.increment_counter("cache_hits_total", namespace=ORDERS_NAMESPACE)
                self.logger.debug("Serving order from cache", order_id=order_id)
                return cached_order

            order = await self.documents.get(ORDERS, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)

            self.metrics.increment_counter("cache_misses_total", namespace=ORDERS_NAMESPACE)
            self.cache.set(
                cache_key,
                order,
                ttl=DETAIL_TTL,
                namespace=ORDERS_NAMESPACE,
                tags=[order_tag(order_id), user_tag(order["customerId"])],
            )
            return order

        @self.app.post("/api/orders")
        @self._invalidates(namespaces=[ORDERS_NAMESPACE])
        async def create_order(request: Request, payload: OrderCreateRequest):
            """Create an order."""
            order = await self.documents.insert(ORDERS, payload.to_document())
            self.logger.info("Order created", order_id=order["id"], category=order["category"])
            return order

        @self.app.put("/api/orders/{order_id}")
        @self._invalidates(
            namespaces=[ORDERS_NAMESPACE],
            tags=lambda request: [order_tag(request.path_params["order_id"])],
        )
        async def update_order(request: Request, order_id: str, payload: OrderUpdateRequest):
            """Update an order."""
            changes = payload.model_dump(by_alias=True, exclude_unset=True)
            order = await self.documents.update(ORDERS, order_id, changes)
            if order is None:
                raise NotFoundError("Order", order_id)

            self.logger.info("Order updated", order_id=order_id, fields=sorted(changes))
            return order

        @self.app.delete("/api/orders/{order_id}")
        @self._invalidates(
            namespaces=[ORDERS_NAMESPACE],
            tags=lambda request: [order_tag(request.path_params["order_id"])],
        )
        async def delete_order(request: Request, order_id: str):
            """Delete an order."""
            if await self.documents.delete(ORDERS, order_id) is None:
                raise NotFoundError("Order", order_id)
            return {"success": True, "message": "Order deleted"}

    def _setup_chat_routes(self):
        """Set up chat routes."""

        @self.app.get("/api/chats")
        @self._cached(
            CHATS_NAMESPACE,
            ttl=LIST_TTL,
            tags=_user_tags,
            key_generator=lambda request: generate_chat_cache_key(request.query_params.get("userId")),
        )
        async def list_chats(request: Request, user_id: Optional[str] = Query(None, alias="userId")):
            """List chats, optionally for one participant."""
            return await self.documents.find(
                CHATS, {"participants": user_id}, sort_by="updatedAt", descending=True
            )

        @self.app.post("/api/chats")
        async def create_chat(payload: ChatCreateRequest):
            """Return the chat between the participants, creating it if needed."""
            participant_ids = list(dict.fromkeys(payload.participant_ids))
            if len(participant_ids) < 2:
                raise ValidationError(
                    "A chat needs at least two distinct participants",
                    {"participantIds": payload.participant_ids},
                )

            wanted = set(participant_ids)
            for chat in await self.documents.find(CHATS, {"participants": participant_ids[0]}):
                if wanted.issubset(chat["participants"]):
                    return chat

            chat = await self.documents.insert(
                CHATS,
                {"participants": participant_ids, "unreadCounts": {}, "lastMessage": None},
            )
            invalidate_chats(self.cache, chat["id"], participant_ids)
            self.logger.info("Chat created", chat_id=chat["id"], participants=participant_ids)
            return chat

    def _setup_message_routes(self):
        """Set up message routes."""

        @self.app.get("/api/messages/{chat_id}")
        @self._cached(
            MESSAGES_NAMESPACE,
            ttl=LIST_TTL,
            tags=lambda request: [chat_tag(request.path_params["chat_id"])],
            key_generator=lambda request: generate_message_cache_key(request.path_params["chat_id"]),
        )
        async def list_messages(request: Request, chat_id: str):
            """Messages of a chat, oldest first."""
            return await self.documents.find(MESSAGES, {"chatId": chat_id}, sort_by="createdAt")

        @self.app.post("/api/messages")
        async def send_message(payload: MessageCreateRequest):
            """Send a message and bump unread counters for the other participants."""
            chat = await self.documents.get(CHATS, payload.chat_id)
            if chat is None:
                raise NotFoundError("Chat", payload.chat_id)

            message = await self.documents.insert(MESSAGES, {**payload.to_document(), "status": "SENT"})

            unread_counts = dict(chat.get("unreadCounts") or {})
            for participant_id in chat["participants"]:
                if participant_id != payload.sender_id:
                    unread_counts[participant_id] = unread_counts.get(participant_id, 0) + 1
            await self.documents.update(
                CHATS, chat["id"], {"unreadCounts": unread_counts, "lastMessage": message}
            )

            invalidate_messages(self.cache, chat["id"])
            return message

        @self.app.delete("/api/messages/{message_id}")
        async def delete_message(message_id: str):
            """Delete a message."""
            message = await self.documents.delete(MESSAGES, message_id)
            if message is None:
                raise NotFoundError("Message", message_id)

            invalidate_messages(self.cache, message["chatId"])
            return {"success": True, "message": "Message deleted"}

    def _setup_notification_routes(self):
        """Set up notification routes."""

        @self.app.get("/api/notifications")
        @self._cached(
            NOTIFICATIONS_NAMESPACE,
            ttl=LIST_TTL,
            tags=_user_tags,
            key_generator=lambda request: generate_notification_cache_key(request.query_params.get("userId")),
        )
        async def list_notifications(request: Request, user_id: Optional[str] = Query(None, alias="userId")):
            """Notifications, newest first."""
            return await self.documents.find(
                NOTIFICATIONS, {"userId": user_id}, sort_by="createdAt", descending=True
            )

        @self.app.post("/api/notifications")
        async def create_notification(payload: NotificationCreateRequest):
            """Create a notification for a user."""
            notification = await self.documents.insert(
                NOTIFICATIONS, {**payload.to_document(), "isRead": False}
            )
            invalidate_notifications(self.cache, payload.user_id)
            return notification

        @self.app.put("/api/notifications/read-all")
        @self._invalidates(namespaces=[NOTIFICATIONS_NAMESPACE], tags=_user_tags)
        async def mark_all_read(request: Request, user_id: Optional[str] = Query(None, alias="userId")):
            """Mark all notifications of a user as read."""
            if not user_id:
                raise ValidationError("userId is required")

            updated = await self.documents.update_many(NOTIFICATIONS, {"userId": user_id}, {"isRead": True})
            return {"message": "All notifications marked as read", "updated": updated}

        @self.app.put("/api/notifications/{notification_id}/read")
        @self._invalidates(namespaces=[NOTIFICATIONS_NAMESPACE])
        async def mark_read(request: Request, notification_id: str):
            """Mark one notification as read."""
            notification = await self.documents.update(NOTIFICATIONS, notification_id, {"isRead": True})
            if notification is None:
                raise NotFoundError("Notification", notification_id)
            return notification

        @self.app.delete("/api/notifications/{notification_id}")
        @self._invalidates(namespaces=[NOTIFICATIONS_NAMESPACE])
        async def delete_notification(request: Request, notification_id: str):
            """Delete a notification."""
            if await self.documents.delete(NOTIFICATIONS, notification_id) is None:
                raise NotFoundError("Notification", notification_id)
            return {"message": "Notification deleted"}

    def _setup_cache_admin_routes(self):
        """Set up cache inspection and recovery routes."""

        @self.app.get("/api/admin/cache/stats")
        async def get_cache_stats():
            """Get cache statistics."""
            stats = self.cache.get_stats()
            self.metrics.set_gauge("cache_entries", stats["size"])
            return stats

        @self.app.get("/api/admin/cache/namespaces/{namespace}/keys")
        async def get_namespace_keys(namespace: str):
            """List live keys under a namespace."""
            keys = self.cache.get_namespace_keys(namespace)
            return {"namespace": namespace, "count": len(keys), "keys": keys}

        @self.app.delete("/api/admin/cache")
        async def clear_cache():
            """Drop every cache entry."""
            cleared = self.cache.clear()
            self._record_invalidation("all", cleared)
            self.logger.warning("Cache cleared by admin request", keys_count=cleared)
            return {"cleared": cleared}

        @self.app.delete("/api/admin/cache/namespaces/{namespace}")
        async def clear_namespace(namespace: str):
            """Drop every entry under a namespace."""
            cleared = self.cache.delete_namespace(namespace)
            self._record_invalidation("namespace", cleared)
            return {"namespace": namespace, "cleared": cleared}

        @self.app.delete("/api/admin/cache/tags/{tag}")
        async def clear_tag(tag: str):
            """Drop every entry carrying a tag."""
            cleared = self.cache.delete_by_tag(tag)
            self._record_invalidation("tag", cleared)
            return {"tag": tag, "cleared": cleared}

        @self.app.delete("/api/admin/cache/keys")
        async def clear_pattern(pattern: str = Query(..., min_length=1)):
            """Drop every entry whose key matches a pattern."""
            cleared = self.cache.delete_pattern(pattern)
            self._record_invalidation("pattern", cleared)
            return {"pattern": pattern, "cleared": cleared}


def create_app():
    """Create FastAPI application."""
    service = MarketplaceService()
    return service.app


if __name__ == "__main__":
    service = MarketplaceService()
    service.run()
