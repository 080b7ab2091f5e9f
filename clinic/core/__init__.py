"""Session primitives: the session value, its events, and the progression rules.

Kept free of FastAPI and storage concerns so transitions stay pure and testable.
"""
