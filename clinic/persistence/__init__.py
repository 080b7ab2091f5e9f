"""Profile and case-history storage.

A device-local file store is always written; a redis-backed remote store mirrors
it for signed-in users. `gateway.PersistenceGateway` composes the two.
"""
