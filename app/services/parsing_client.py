"""Parsing service client — n8n webhooks for email parsing and generation.

Purpose:
  One client for every call to the external AI workflow service: post-order
  update extraction, quote request / follow-up / order confirmation email
  generation, and the parts-search assistant.

Design rules:
  - Every call returns normalized data or raises ExternalServiceError
    (ExternalServiceTimeout on timeout). Callers decide whether the
    failure is swallowed (background work) or surfaced (accept path).
  - Retries with exponential backoff on transient HTTP statuses and
    connection errors. Timeouts are not retried; the caller falls back.
  - The bearer token is sent on every request when configured.
  - The service answers in several envelope shapes; extract_response_data
    unwraps them to one dict.

Called by: order_tracker, order_service, conversion, follow_up, chat_service
Depends on: app.http_client, app.config, schemas/webhooks
"""

import asyncio
import json
import re
import time
from typing import Any

import httpx
from loguru import logger

from app.config import settings
from app.errors import ExternalServiceError, ExternalServiceTimeout
from app.http_client import http
from app.schemas.webhooks import ParseServiceResponse

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds

_JSON_FENCE = re.compile(r"```json\s*\n(.*)\n```", re.DOTALL)


def _headers() -> dict:
    headers = {"Content-Type": "application/json"}
    if settings.webhook_auth_token:
        headers["Authorization"] = f"Bearer {settings.webhook_auth_token}"
    return headers


# ── Response envelopes ────────────────────────────────────────────────


def _parse_output_text(text: str) -> dict | None:
    m = _JSON_FENCE.search(text)
    candidate = m.group(1) if m else text
    try:
        data = json.loads(candidate)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _email_envelope(email: dict, message_id: str | None = None) -> dict:
    return {
        "emailContent": {
            "subject": email.get("subject", ""),
            "body": email.get("body", ""),
            "bodyHtml": email.get("bodyHtml") or email.get("body", ""),
        },
        "messageId": message_id,
    }


def extract_response_data(response: Any) -> dict:
    """Unwrap the service's response to a single dict.

    Known shapes:
      [{"response": {"body": {...}}}]
      [{"output": "```json\\n{...}\\n```"}] or [{"output": "{...}"}]
      [{"email": {...}, "metadata": {...}}] / {"email": {...}}
      {"fullResponse": {"data": {"email": {...}}}}
      {"output": "plain text"}  → success with text_output
      {...}                     → returned as is
    """
    if not response:
        logger.warning("Empty response from parsing service")
        return {}

    if isinstance(response, list):
        first = response[0] if isinstance(response[0], dict) else {}
        body = (first.get("response") or {}).get("body")
        if isinstance(body, dict):
            return body
        output = first.get("output")
        if isinstance(output, str):
            parsed = _parse_output_text(output)
            if parsed is not None:
                return parsed
            logger.warning("Parsing service output is not JSON: {}", output[:200])
        email = first.get("email")
        if isinstance(email, dict) and email.get("subject") and email.get("body"):
            return _email_envelope(email, (first.get("metadata") or {}).get("messageId"))
        return first

    if not isinstance(response, dict):
        return {"success": True, "textOutput": str(response)}

    if "emailContent" in response:
        return response
    email = response.get("email")
    if isinstance(email, dict) and email.get("subject") and email.get("body"):
        return _email_envelope(email, (response.get("metadata") or {}).get("messageId"))
    nested = ((response.get("fullResponse") or {}).get("data") or {}).get("email")
    if isinstance(nested, dict):
        return _email_envelope(nested, (response.get("metadata") or {}).get("messageId"))
    output = response.get("output")
    if isinstance(output, str) and len(response) == 1:
        parsed = _parse_output_text(output)
        if parsed is not None:
            return parsed
        return {"success": True, "message": "Processed by parsing service", "textOutput": output}
    return response


# ── Transport ─────────────────────────────────────────────────────────


async def _post(name: str, url: str, payload: dict, timeout: float, retries: int = MAX_RETRIES) -> Any:
    """POST to one webhook with up to ``retries`` attempts. Returns the decoded body."""
    if not url:
        raise ExternalServiceError(f"{name} webhook URL not configured")

    for attempt in range(retries):
        try:
            start = time.monotonic()
            resp = await http.post(url, headers=_headers(), json=payload, timeout=timeout)
            elapsed = time.monotonic() - start
        except httpx.TimeoutException as e:
            logger.warning("Webhook {} timed out after {}s: {}", name, timeout, e)
            raise ExternalServiceTimeout(f"{name} webhook timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            if attempt < retries - 1:
                delay = BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Webhook {} failed (attempt {}/{}), retry in {:.1f}s: {}",
                    name, attempt + 1, retries, delay, e,
                )
                await asyncio.sleep(delay)
                continue
            raise ExternalServiceError(f"{name} webhook failed after {retries} attempts: {e}") from e

        if resp.status_code < 400:
            logger.info("Webhook {} OK | {} | {:.1f}s", name, resp.status_code, elapsed)
            try:
                return resp.json()
            except ValueError:
                return {"output": resp.text}

        if resp.status_code in RETRYABLE_STATUSES and attempt < retries - 1:
            delay = BASE_DELAY * (2 ** attempt)
            logger.warning(
                "Webhook {} {} (attempt {}/{}), retry in {:.1f}s: {}",
                name, resp.status_code, attempt + 1, MAX_RETRIES, delay, resp.text[:200],
            )
            await asyncio.sleep(delay)
            continue

        raise ExternalServiceError(f"{name} webhook returned {resp.status_code}: {resp.text[:200]}")

    raise ExternalServiceError(f"{name} webhook exhausted retries")


# ── Calls ─────────────────────────────────────────────────────────────


async def post_order_update(payload: dict) -> ParseServiceResponse:
    """Send post-creation order context; returns candidate order/item updates."""
    raw = await _post(
        "post_order", settings.post_order_webhook_url, payload, settings.webhook_timeout_seconds
    )
    data = extract_response_data(raw)
    try:
        return ParseServiceResponse.model_validate(data)
    except ValueError as e:
        raise ExternalServiceError(f"post_order response did not validate: {e}") from e


async def generate_quote_request_email(payload: dict) -> dict:
    raw = await _post(
        "quote_request", settings.quote_request_webhook_url, payload, settings.webhook_timeout_seconds
    )
    return extract_response_data(raw)


async def generate_follow_up_email(payload: dict) -> dict:
    """Returns {"emailContent": {subject, body, bodyHtml}, "messageId": ...}."""
    raw = await _post(
        "follow_up", settings.follow_up_webhook_url, payload, settings.webhook_timeout_seconds
    )
    data = extract_response_data(raw)
    content = data.get("emailContent") or {}
    if not content.get("subject") or not content.get("body"):
        raise ExternalServiceError("follow_up response carried no email content")
    return data


async def generate_order_confirmation_email(payload: dict) -> dict:
    raw = await _post(
        "order_confirmation",
        settings.order_confirmation_webhook_url,
        payload,
        settings.order_confirmation_timeout_seconds,
    )
    return extract_response_data(raw)


async def search_parts(payload: dict) -> dict:
    """Parts-search assistant. Long timeout; the caller polls on timeout."""
    raw = await _post(
        "parts_search",
        settings.parts_search_webhook_url,
        payload,
        settings.chat_webhook_timeout_seconds,
        retries=1,
    )
    return extract_response_data(raw)
