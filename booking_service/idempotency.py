import json

from .config import IDEMPOTENCY_TTL_SECONDS
from .redis_client import redis_client


def processed_key(event_id: str) -> str:
    return f"processed_event:{event_id}"


def action_key(actor_sub: str, action: str, key: str) -> str:
    return f"idempotency:{actor_sub}:{action}:{key}"


async def is_processed(event_id: str) -> bool:
    return bool(await redis_client.exists(processed_key(event_id)))


async def mark_processed(event_id: str):
    await redis_client.set(processed_key(event_id), "1", ex=IDEMPOTENCY_TTL_SECONDS)


async def get_cached_response(actor_sub: str, action: str, key: str) -> dict | None:
    raw = await redis_client.get(action_key(actor_sub, action, key))
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


async def cache_response(actor_sub: str, action: str, key: str, response: dict):
    await redis_client.set(
        action_key(actor_sub, action, key),
        json.dumps(response, default=str),
        ex=IDEMPOTENCY_TTL_SECONDS,
    )
