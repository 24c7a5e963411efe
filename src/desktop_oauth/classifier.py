"""Reduce a raw HTTP response to a :class:`RequestOutcome`."""

from __future__ import annotations

import json
import logging

from .models import JsonDocument, RequestOutcome, Status

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
INVALID_GRANT_ERROR = "invalid_grant"


def extract_mime_type(content_type: str | None) -> str:
    """Strip parameters such as ``; charset=utf-8`` from a Content-Type."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def parse_document(body: bytes | str | None) -> JsonDocument:
    """Parse a JSON body, tolerating empty or malformed content.

    Some provider errors come back with an empty body, so a parse failure
    yields an empty document instead of an error. Bodies nested too deeply
    for the parser count as a parse failure.
    """
    if not body:
        return JsonDocument()
    try:
        return JsonDocument(json.loads(body))
    except (ValueError, RecursionError):
        logger.debug("Response body is not valid JSON, using an empty document")
        return JsonDocument()


def classify(
    transport_succeeded: bool,
    status_code: int,
    content_type: str | None,
    body: bytes | str | None,
) -> RequestOutcome:
    """Classify the result of an auth-related request.

    Args:
        transport_succeeded: False if the request never got a response
        status_code: HTTP status of the response
        content_type: Raw ``Content-Type`` header value
        body: Raw response body

    Returns:
        ``RequestOutcome.success(document)`` for 2xx JSON responses, a
        failure outcome otherwise.
    """
    if not transport_succeeded:
        logger.error("The auth-related request couldn't be completed due to connectivity problems")
        return RequestOutcome.failure(Status.CONNECTION_ERROR)

    logger.info("The auth-related request has returned. Status - %s", status_code)

    mime_type = extract_mime_type(content_type)
    if mime_type != JSON_CONTENT_TYPE:
        logger.error(
            "Unsupported response content type - `%s`, supported one is `%s`",
            mime_type,
            JSON_CONTENT_TYPE,
        )
        return RequestOutcome.failure(Status.UNSUPPORTED_CONTENT_TYPE)

    document = parse_document(body)

    if 200 <= status_code < 300:
        logger.info("The auth-related request has been successfully completed")
        return RequestOutcome.success(document)

    error_code = document.try_get_string("error") or ""
    error_description = document.try_get_string("error_description") or ""

    if error_code == INVALID_GRANT_ERROR:
        logger.error("Invalid grant error happened when performing an auth-related request: %s", error_description)
        return RequestOutcome.failure(Status.INVALID_GRANT)

    logger.error(
        "An error happened when performing an auth-related request. Code - `%s`: \"%s\"",
        error_code,
        error_description,
    )
    return RequestOutcome.failure(Status.UNKNOWN_ERROR)
