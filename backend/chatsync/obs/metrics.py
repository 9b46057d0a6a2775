"""Central registry for Prometheus metrics used by the chat sync core."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

CHAT_SEND = Counter(
	"chatsync_messages_sent_total",
	"Messages appended to a conversation",
	["kind"],
)

CHAT_SEND_FAILED = Counter(
	"chatsync_message_send_failures_total",
	"Send attempts that left the draft in place",
	["reason"],
)

ATTACHMENT_UPLOADS = Counter(
	"chatsync_attachment_uploads_total",
	"Attachment uploads by kind and outcome",
	["kind", "outcome"],
)

FEED_DUPLICATES = Counter(
	"chatsync_feed_duplicates_dropped_total",
	"Messages discarded by a feed because their id was already seen",
)

SUBSCRIPTION_CALLBACK_ERRORS = Counter(
	"chatsync_subscription_callback_errors_total",
	"Subscription callbacks that raised and were skipped",
)

ACTIVE_SUBSCRIPTIONS = Gauge(
	"chatsync_active_subscriptions",
	"Append subscriptions currently open",
)

SESSION_EVENTS = Counter(
	"chatsync_session_events_total",
	"Sign-in, auto-login and logout events",
	["event", "outcome"],
)


def inc_chat_send(kind: str) -> None:
	CHAT_SEND.labels(kind=kind).inc()


def inc_chat_send_failed(reason: str) -> None:
	CHAT_SEND_FAILED.labels(reason=reason).inc()


def inc_attachment_upload(kind: str, outcome: str) -> None:
	ATTACHMENT_UPLOADS.labels(kind=kind, outcome=outcome).inc()


def inc_feed_duplicate() -> None:
	FEED_DUPLICATES.inc()


def inc_subscription_callback_error() -> None:
	SUBSCRIPTION_CALLBACK_ERRORS.inc()


def subscription_opened() -> None:
	ACTIVE_SUBSCRIPTIONS.inc()


def subscription_closed() -> None:
	ACTIVE_SUBSCRIPTIONS.dec()


def inc_session_event(event: str, outcome: str) -> None:
	SESSION_EVENTS.labels(event=event, outcome=outcome).inc()
