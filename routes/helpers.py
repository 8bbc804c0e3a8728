"""
Shared helpers for the JSON route handlers.
"""

from typing import Any, Dict, Iterable, List, Optional

import bleach
from flask import current_app, request

from core.exceptions import ValidationError

# Free-text fields cleaned before they reach the services
TEXT_FIELDS = ("job", "jobName", "customer", "supplier")

MAX_TEXT_LENGTH = 200


def sanitize_text(text: Any, max_length: Optional[int] = MAX_TEXT_LENGTH) -> str:
    """
    Sanitize user input text to prevent XSS and injection attacks.

    Args:
        text: Raw input text
        max_length: Optional maximum length to enforce

    Returns:
        Sanitized text safe for storage and display
    """
    if not text:
        return ""

    # Strip whitespace
    text = str(text).strip()

    # Bleach HTML tags and attributes
    text = bleach.clean(text, tags=[], strip=True)

    # Truncate if needed
    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text


def sanitize_jobs(jobs: Any, fields: Iterable[str] = TEXT_FIELDS) -> Any:
    """Clean the free-text fields of every job dict in a request payload."""
    if not isinstance(jobs, list):
        return jobs
    cleaned: List[Any] = []
    for job in jobs:
        if isinstance(job, dict):
            job = dict(job)
            for field in fields:
                if field in job and job[field] is not None:
                    job[field] = sanitize_text(job[field])
        cleaned.append(job)
    return cleaned


def json_body(required: bool = True) -> Dict[str, Any]:
    """
    Request body as a dict.

    Raises:
        ValidationError: Body missing (when required) or not a JSON object
    """
    payload = request.get_json(silent=True)
    if payload is None:
        if required:
            raise ValidationError("Request body must be JSON")
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def service(name: str):
    """Service instance stored in app.config by create_app()."""
    return current_app.config[name]


def query_flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


def query_list(name: str) -> Optional[List[str]]:
    raw = request.args.get(name, "")
    values = [part.strip() for part in raw.split(",") if part.strip()]
    return values or None
