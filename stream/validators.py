# validators.py
REQUIRED_FIELDS = (
    ("subjectId", "lifeId", "subject_id"),
    ("channel", "channelIdentifier"),
    ("samples",),
    ("sampleRate", "sample_rate"),
    ("clientTimestamp", "client_timestamp"),
)


def has_required_fields(message: dict) -> bool:
    if not isinstance(message, dict):
        return False
    return all(
        any(message.get(name) not in (None, "") for name in names)
        for names in REQUIRED_FIELDS
    )


def has_samples(message: dict) -> bool:
    samples = message.get("samples")
    return isinstance(samples, list) and len(samples) > 0


def is_channel_allowed(channel: str, allowed_channels) -> bool:
    return not allowed_channels or channel in allowed_channels


def is_owner(subject_id: int, session_subject_id) -> bool:
    return session_subject_id is not None and subject_id == session_subject_id
