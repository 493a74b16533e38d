"""
Marketplace Service package.

Serves the job-marketplace API (orders, chats, messages, notifications)
and fronts the document store with an in-process response cache.

Structure:
- app.main: FastAPI app, routes, and cache wiring.
- app.adapters: Document store the routes read and write.
- app.caching: Cache store, key schemes, and route decorators.
- app.domain: Request models and enums.
"""
