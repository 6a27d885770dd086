"""Observability helpers (Sentry init, breadcrumbs and side-channel telemetry).

Centralises Sentry initialisation for the API and the CLI so configuration
does not drift.  Keeps initialisation a no-op if the SDK or DSN are
missing.

``log_event`` is the side channel the pipeline uses to mirror progress
lines to a remote log sink (``TELEMETRY_URL``).  Dispatch is never
awaited by the caller and its failures are discarded: telemetry must not
slow down or fail a capture.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from receipt_capture.core.config import settings

try:  # Optional import
	import sentry_sdk  # type: ignore
	from sentry_sdk.integrations.fastapi import FastApiIntegration  # type: ignore
	from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration  # type: ignore
	_SENTRY_AVAILABLE = True
except Exception:  # pragma: no cover
	_SENTRY_AVAILABLE = False

logger = logging.getLogger(__name__)

# Strong references to in-flight telemetry tasks so they are not collected mid-flight
_pending: Set["asyncio.Task[None]"] = set()


def _before_send(event: Dict[str, Any], hint: Dict[str, Any] | None = None):  # type: ignore[override]
	"""Scrub obvious PII / secrets before sending to Sentry.

	- Drop Authorization & Cookie headers
	- Remove request data/body (receipt images are uploaded as bodies)
	"""
	try:
		req = event.get("request") or {}
		headers = req.get("headers") or {}
		for k in list(headers.keys()):
			if k.lower() in ("authorization", "cookie", "set-cookie"):
				headers.pop(k, None)
		req.pop("data", None)
		event["request"] = req
	except Exception:  # best effort
		pass
	return event


def init_sentry(service: str) -> bool:
	"""Initialise Sentry once for a given process.

	Returns True if Sentry was initialised; False otherwise.
	"""
	if not (_SENTRY_AVAILABLE and settings.SENTRY_DSN):  # pragma: no cover - simple guard
		return False
	if getattr(init_sentry, "_done", False):  # prevent duplicate init in same process
		return True
	sentry_sdk.init(
		dsn=settings.SENTRY_DSN,
		integrations=[FastApiIntegration(), SqlalchemyIntegration()],
		traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0),
		environment=settings.ENVIRONMENT,
		release=settings.SENTRY_RELEASE,
		before_send=_before_send,
	)
	sentry_sdk.set_tag("service", service)
	init_sentry._done = True  # type: ignore[attr-defined]
	return True


def sentry_set_tags(tags: Dict[str, Any]) -> None:
	"""Best-effort: set tags on current Sentry scope (strings only)."""
	try:
		if not (_SENTRY_AVAILABLE and settings.SENTRY_DSN):
			return
		for k, v in (tags or {}).items():
			sentry_sdk.set_tag(str(k), str(v)[:128] if v is not None else "")
	except Exception:
		return


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
	"""Best-effort: add a breadcrumb for important lifecycle steps."""
	try:
		if not (_SENTRY_AVAILABLE and settings.SENTRY_DSN):
			return
		sentry_sdk.add_breadcrumb(  # type: ignore
			category=category,
			message=message,
			level=level,
			data=data or {},
		)
	except Exception:
		return


def sentry_capture(exc: BaseException) -> None:
	try:
		if _SENTRY_AVAILABLE and settings.SENTRY_DSN:
			sentry_sdk.capture_exception(exc)
	except Exception:
		return


async def _post_telemetry(url: str, message: str) -> None:
	async with httpx.AsyncClient(timeout=settings.TELEMETRY_TIMEOUT_SECONDS) as client:
		await client.post(url, json={"message": message})


def _discard_result(task: "asyncio.Task[None]") -> None:
	_pending.discard(task)
	if task.cancelled():
		return
	exc = task.exception()
	if exc is not None:
		logger.debug("[telemetry] dropped: %s", exc)


def log_event(message: str) -> None:
	"""Fire-and-forget: log ``message`` locally and mirror it to ``TELEMETRY_URL``.

	Never raises and never blocks.  Outside a running event loop only the
	local log line is written.
	"""
	logger.info(message)
	url = settings.TELEMETRY_URL
	if not url:
		return
	try:
		loop = asyncio.get_running_loop()
	except RuntimeError:
		return
	try:
		task = loop.create_task(_post_telemetry(url, message))
	except Exception as exc:  # pragma: no cover - loop closing
		logger.debug("[telemetry] dispatch failed: %s", exc)
		return
	_pending.add(task)
	task.add_done_callback(_discard_result)


__all__ = [
	"init_sentry",
	"sentry_set_tags",
	"sentry_breadcrumb",
	"sentry_capture",
	"log_event",
]
