from __future__ import annotations

import logging
from functools import lru_cache

from clinic.config import settings_from_env
from clinic.generation.factory import create_default_generator
from clinic.infra.redis_client import create_redis
from clinic.persistence.gateway import PersistenceGateway
from clinic.persistence.local import LocalStore
from clinic.persistence.remote import RemoteStore
from clinic.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_registry() -> SessionRegistry:
    """Process-wide registry; tests replace it via `app.dependency_overrides`."""

    settings = settings_from_env()
    remote = None
    if settings.redis_url:
        remote = RemoteStore(create_redis(settings.redis_url))
    else:
        logger.info("REDIS_URL not set; profiles are kept on this machine only")

    gateway = PersistenceGateway(
        local=LocalStore(settings.local_dir),
        remote=remote,
        history_cap=settings.history_cap,
    )
    return SessionRegistry(generator=create_default_generator(), gateway=gateway, settings=settings)
