"""
Domain layer for the Art Framer backend.

This layer contains business entities and value objects shared by the
checkout, fulfillment and pricing services.
"""
