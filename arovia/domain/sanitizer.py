import copy
import hashlib
import json
import re
from typing import Any, Mapping


DIRECT_IDENTIFIERS = ("name", "email", "phone")
NATIONAL_ID_FIELD = "abha_id"
PSEUDONYM_PREFIX = "user_"
PSEUDONYM_SUFFIX_LENGTH = 6
NOTES_FIELD = "notes"
NOTES_MAX_LENGTH = 1000

_PSEUDONYM_RE = re.compile(rf"{PSEUDONYM_PREFIX}.{{1,{PSEUDONYM_SUFFIX_LENGTH}}}", re.DOTALL)


def pseudonymize_id(value: Any) -> str:
    """Reduce an identifier to a tagged pseudonym keeping its last six characters."""
    text = str(value)
    if _PSEUDONYM_RE.fullmatch(text):
        return text
    return f"{PSEUDONYM_PREFIX}{text[-PSEUDONYM_SUFFIX_LENGTH:]}"


def sanitize_payload(raw: Mapping[str, Any]) -> dict:
    """
    Return a copy of a patient-like payload with direct identifiers removed.

    - name, email and phone are dropped
    - a national health id is replaced by its pseudonym
    - free-text notes are truncated to NOTES_MAX_LENGTH characters

    The input is never modified and sanitize_payload(sanitize_payload(x))
    equals sanitize_payload(x).
    """
    sanitized = copy.deepcopy(dict(raw))

    for key in DIRECT_IDENTIFIERS:
        sanitized.pop(key, None)

    if sanitized.get(NATIONAL_ID_FIELD):
        sanitized[NATIONAL_ID_FIELD] = pseudonymize_id(sanitized[NATIONAL_ID_FIELD])

    notes = sanitized.get(NOTES_FIELD)
    if isinstance(notes, str):
        sanitized[NOTES_FIELD] = notes[:NOTES_MAX_LENGTH]

    return sanitized


def serialize_payload(payload: Any) -> str:
    """Serialize a payload exactly as it is submitted to the model."""
    return json.dumps(payload, indent=2, sort_keys=True, default=str)


def input_hash(serialized: str) -> str:
    """SHA-256 audit hash of the submitted bytes."""
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()
