"""API key authentication and tenant context extraction.

Service-to-service API keys arrive in the X-Api-Key header and are looked up
in the registry held in LEGACY_IMPORT_API_KEYS_JSON:

    {"<key>": {"tenantId": "...", "actorId": "...", "name": "..."}}

Fails closed on missing or unknown keys. Errors never reveal whether a
tenant exists.
"""

import hmac
import json
import logging
import os
from typing import Annotated

from fastapi import Depends, Request
from pydantic import ValidationError

from legacy_import.api.errors import ApiHttpError
from legacy_import.models import CamelModel
from legacy_import.services import Actor

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Api-Key"
API_KEYS_ENV = "LEGACY_IMPORT_API_KEYS_JSON"


class ApiKeyRecord(CamelModel):
    """API key registry entry."""

    tenant_id: str
    actor_id: str
    name: str = ""


class TenantContext(CamelModel):
    """The authenticated caller: its tenant and reviewer identity."""

    tenant_id: str
    actor_id: str
    name: str = ""

    @property
    def actor(self) -> Actor:
        return Actor(actor_id=self.actor_id, name=self.name or None)


def _load_api_key_registry() -> dict[str, ApiKeyRecord]:
    """Load the API key registry from the environment.

    Returns an empty registry if the variable is missing or malformed.
    Malformed entries are skipped.
    """
    raw = os.environ.get(API_KEYS_ENV)
    if not raw:
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse %s; treating as empty registry", API_KEYS_ENV)
        return {}

    if not isinstance(parsed, dict):
        logger.warning("%s is not an object; treating as empty registry", API_KEYS_ENV)
        return {}

    registry: dict[str, ApiKeyRecord] = {}
    for key, value in parsed.items():
        if not isinstance(key, str) or not isinstance(value, dict):
            continue
        try:
            registry[key] = ApiKeyRecord.model_validate(value)
        except ValidationError:
            logger.warning("Skipping malformed entry in %s", API_KEYS_ENV)
    return registry


def _constant_time_lookup(
    provided_key: str, registry: dict[str, ApiKeyRecord]
) -> ApiKeyRecord | None:
    """Compare against every registered key with hmac.compare_digest."""
    matched_record: ApiKeyRecord | None = None
    provided_bytes = provided_key.encode("utf-8")

    for registered_key, record in registry.items():
        if hmac.compare_digest(provided_bytes, registered_key.encode("utf-8")):
            matched_record = record

    return matched_record


def require_tenant_context(request: Request) -> TenantContext:
    """FastAPI dependency resolving the caller's tenant context.

    Raises:
        ApiHttpError: 401 if the key is missing or unknown.
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        raise ApiHttpError(status_code=401, code="UNAUTHORIZED", message="Missing API key")

    record = _constant_time_lookup(api_key, _load_api_key_registry())
    if record is None:
        raise ApiHttpError(status_code=401, code="UNAUTHORIZED", message="Invalid API key")

    context = TenantContext(tenant_id=record.tenant_id, actor_id=record.actor_id, name=record.name)
    request.state.tenant_context = context
    return context


RequireTenantContext = Annotated[TenantContext, Depends(require_tenant_context)]
