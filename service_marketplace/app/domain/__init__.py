"""
Domain models for the marketplace service.

Request payloads and enums shared by the route handlers. Documents are
stored and returned as plain dicts in the client's camelCase shape.
"""
