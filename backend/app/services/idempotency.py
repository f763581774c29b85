from __future__ import annotations

import enum
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.exceptions import ConflictError
from app.models.idempotency import IdempotencyRecord

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)

# Field carried in request bodies that never takes part in the hash.
IDEMPOTENCY_KEY_FIELD = "idempotency_key"

# ---------------------------------------------------------------------------
# Canonical request hashing
# ---------------------------------------------------------------------------


def _json_serializer(obj: Any) -> Any:
    """Serialize the non-JSON types that appear in request payloads."""
    if isinstance(obj, Decimal):
        # Trailing zeros do not change the request.
        return str(obj.normalize())
    if isinstance(obj, datetime):
        if obj.tzinfo is not None:
            obj = obj.astimezone(UTC)
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, enum.Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace, normalized scalars."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_request(payload: BaseModel | dict[str, Any], **context: Any) -> str:
    """SHA-256 of the canonical request, excluding the idempotency key.

    ``context`` adds values that identify the target but are not part of the
    body, such as path parameters.
    """
    if isinstance(payload, BaseModel):
        data = payload.model_dump(exclude={IDEMPOTENCY_KEY_FIELD})
    else:
        data = {k: v for k, v in payload.items() if k != IDEMPOTENCY_KEY_FIELD}
    if context:
        data = {"body": data, "context": context}
    return hashlib.sha256(canonicalize_json(data).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Check / store
# ---------------------------------------------------------------------------


class IdempotencyOutcome(enum.StrEnum):
    PROCEED = "PROCEED"
    REPLAY = "REPLAY"
    CONFLICT = "CONFLICT"


@dataclass(frozen=True)
class IdempotencyCheck:
    """Result of looking up a key before executing a write."""

    outcome: IdempotencyOutcome
    record: IdempotencyRecord | None = None


async def check_or_reserve(
    session: AsyncSession,
    scope: str,
    caller_key: str,
    idempotency_key: str,
    request_hash: str,
) -> IdempotencyCheck:
    """Look up a key within (scope, caller).

    PROCEED means the write may run; the key is reserved when
    ``store_response`` inserts the record in the same transaction, so a
    concurrent duplicate loses on the unique constraint at commit.
    """
    result = await session.execute(
        select(IdempotencyRecord).where(
            col(IdempotencyRecord.scope) == scope,
            col(IdempotencyRecord.caller_key) == caller_key,
            col(IdempotencyRecord.idempotency_key) == idempotency_key,
        )
    )
    record = result.scalars().first()
    if record is None:
        return IdempotencyCheck(outcome=IdempotencyOutcome.PROCEED)
    if record.request_hash != request_hash:
        return IdempotencyCheck(outcome=IdempotencyOutcome.CONFLICT, record=record)
    return IdempotencyCheck(outcome=IdempotencyOutcome.REPLAY, record=record)


async def store_response(
    session: AsyncSession,
    *,
    scope: str,
    caller_key: str,
    idempotency_key: str,
    request_hash: str,
    response_status: int,
    response_body: dict[str, Any],
) -> IdempotencyRecord:
    """Persist the response descriptor in the caller's transaction."""
    record = IdempotencyRecord(
        scope=scope,
        caller_key=caller_key,
        idempotency_key=idempotency_key,
        request_hash=request_hash,
        response_status=response_status,
        response_body=response_body,
    )
    session.add(record)
    await session.flush()
    return record


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


def _resolve(check: IdempotencyCheck, response_model: type[Any]) -> Any:
    if check.outcome == IdempotencyOutcome.CONFLICT:
        raise ConflictError("Idempotency key was already used with a different request")
    if check.record is None:
        raise ConflictError("Idempotency record is missing its stored response")
    return response_model.model_validate(check.record.response_body)


async def run_idempotent(
    session: AsyncSession,
    *,
    scope: str,
    caller_key: str,
    idempotency_key: str | None,
    request_hash: str,
    response_model: type[ResponseT],
    work: Callable[[], Awaitable[ResponseT]],
    response_status: int = 200,
) -> ResponseT:
    """Run one mutating operation as a single, optionally keyed, unit of work.

    Flow:
    1. With a key, look it up: a matching record replays its stored
       response; a record with a different request hash is a CONFLICT.
    2. Run ``work`` (which only flushes), store the response under the key
       and commit.
    3. A unique-constraint failure rolls everything back. With a key the
       lookup is repeated, because a concurrent duplicate may have won;
       otherwise it is reported as a natural-key CONFLICT.
    4. Any other failure rolls everything back and propagates.
    """
    if idempotency_key is not None:
        check = await check_or_reserve(session, scope, caller_key, idempotency_key, request_hash)
        if check.outcome != IdempotencyOutcome.PROCEED:
            logger.info("Idempotency %s for scope=%s key=%s", check.outcome, scope, idempotency_key)
            return _resolve(check, response_model)

    try:
        response = await work()
        if idempotency_key is not None:
            await store_response(
                session,
                scope=scope,
                caller_key=caller_key,
                idempotency_key=idempotency_key,
                request_hash=request_hash,
                response_status=response_status,
                response_body=response.model_dump(mode="json"),
            )
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if idempotency_key is not None:
            check = await check_or_reserve(session, scope, caller_key, idempotency_key, request_hash)
            if check.outcome != IdempotencyOutcome.PROCEED:
                return _resolve(check, response_model)
        raise ConflictError("Request conflicts with an existing record") from exc
    except Exception:
        await session.rollback()
        raise
    return response
