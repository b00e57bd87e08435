import json
import logging
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from protocol.types import IngestionMessage
from stream.errors import IngestionError, MalformedInput, OwnershipMismatch
from stream.stream_metrics import validation_failures
from stream.validators import has_required_fields, has_samples, is_channel_allowed, is_owner

logger = logging.getLogger("validation")


def validate_message(
    raw: Any,
    session_subject_id: Optional[int],
    allowed_channels: Iterable[str] = (),
    quarantine_file: Optional[str] = None,
) -> IngestionMessage:
    """Parse and check one ingestion message.

    Raises ``MalformedInput`` for missing/empty/invalid fields or a channel
    outside the allowed set, and ``OwnershipMismatch`` when the message's
    subject is not the authenticated session's subject.
    """
    try:
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise MalformedInput(f"Invalid JSON: {exc.msg}") from exc

        if not has_required_fields(raw):
            raise MalformedInput("Missing required fields")

        if not has_samples(raw):
            raise MalformedInput("Empty or invalid samples")

        try:
            message = IngestionMessage.model_validate(raw)
        except ValidationError as exc:
            raise MalformedInput(f"Invalid field values: {exc.error_count()} error(s)") from exc

        if not is_owner(message.subject_id, session_subject_id):
            raise OwnershipMismatch(
                f"subjectId {message.subject_id} does not match authenticated subject {session_subject_id}"
            )

        allowed = tuple(allowed_channels)
        if not is_channel_allowed(message.channel, allowed):
            raise MalformedInput(f"Channel {message.channel} not in allowed set {list(allowed)}")

        return message

    except IngestionError as e:
        validation_failures.labels(reason=e.reason).inc()
        logger.warning(f"[ValidationError] Type={type(e).__name__} Reason={str(e)} Session={session_subject_id}")
        if quarantine_file and isinstance(e, MalformedInput):
            try:
                with open(quarantine_file, "a") as f:
                    f.write(json.dumps(raw, default=str) + "\n")
            except (OSError, TypeError) as write_err:
                logger.error(f"[QuarantineWriteError] {write_err}")
        raise
