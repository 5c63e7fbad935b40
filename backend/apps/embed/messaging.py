"""
Typed messaging between an embedded sign-in frame and its host page.

The transport itself (postMessage, a websocket, a test harness) is outside
this module. Whatever receives raw messages calls ``MessageBus.post``, and a
single ``dispatch`` loop per session hands envelopes to subscribed handlers.
Each session has its own bounded mailbox, so one noisy session cannot starve
another, and messages for unknown sessions are dropped instead of being
broadcast to whoever happens to be listening.
"""

import queue
import threading
import uuid
from collections import deque
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from apps.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAILBOX_SIZE = 32
# Remembered message ids per session, for dropping redelivered messages
SEEN_MESSAGE_IDS = 256


class MessageType(StrEnum):
    INIT = "init"
    AUTH_READY = "auth_ready"
    AUTH_REQUEST = "auth_request"
    AUTH_RESPONSE = "auth_response"
    AUTH_SUCCESS = "auth_success"
    AUTH_CANCEL = "auth_cancel"
    ERROR = "error"
    CLOSE = "close"


class Envelope(BaseModel):
    """One message. ``message_id`` makes at-least-once delivery safe to replay."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: MessageType
    session_id: str = Field(min_length=1, max_length=128)
    payload: dict[str, Any] = Field(default_factory=dict)
    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex, max_length=128)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


Handler = Callable[[Envelope], None]


class MailboxFullError(Exception):
    """The session's mailbox is at capacity."""


class Mailbox:
    """Bounded FIFO for one session, dropping message ids it has already seen."""

    def __init__(self, maxsize: int = DEFAULT_MAILBOX_SIZE) -> None:
        self._queue: queue.Queue[Envelope] = queue.Queue(maxsize=maxsize)
        self._seen: deque[str] = deque(maxlen=SEEN_MESSAGE_IDS)

    def put(self, envelope: Envelope) -> bool:
        """Enqueue; False for a duplicate. Raises MailboxFullError when full."""
        if envelope.message_id in self._seen:
            return False
        try:
            self._queue.put_nowait(envelope)
        except queue.Full as e:
            raise MailboxFullError(envelope.session_id) from e
        self._seen.append(envelope.message_id)
        return True

    def get(self) -> Envelope | None:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()


class MessageBus:
    """Session-scoped publish/subscribe over bounded mailboxes."""

    def __init__(self, mailbox_size: int = DEFAULT_MAILBOX_SIZE) -> None:
        self.mailbox_size = mailbox_size
        self._mailboxes: dict[str, Mailbox] = {}
        self._handlers: dict[str, dict[MessageType, list[Handler]]] = {}
        self._lock = threading.Lock()

    def open_session(self, session_id: str | None = None) -> str:
        session_id = session_id or uuid.uuid4().hex
        with self._lock:
            if session_id not in self._mailboxes:
                self._mailboxes[session_id] = Mailbox(self.mailbox_size)
                self._handlers[session_id] = {}
        logger.debug("embed_session_opened", session_id=session_id)
        return session_id

    def has_session(self, session_id: str) -> bool:
        return session_id in self._mailboxes

    def subscribe(
        self, session_id: str, message_type: MessageType, handler: Handler
    ) -> Callable[[], None]:
        """Register a handler; returns a callable that unregisters it."""
        with self._lock:
            if session_id not in self._handlers:
                raise KeyError(f"Unknown session: {session_id}")
            self._handlers[session_id].setdefault(message_type, []).append(handler)
        return lambda: self.unsubscribe(session_id, message_type, handler)

    def unsubscribe(self, session_id: str, message_type: MessageType, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(session_id, {}).get(message_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def post(self, message: Envelope | Mapping[str, Any]) -> bool:
        """
        Accept a message from the transport.

        Returns False when the message was dropped: unparseable or of an
        unknown type, addressed to an unknown session, a duplicate, or the
        session's mailbox is full.
        """
        if isinstance(message, Envelope):
            envelope = message
        else:
            try:
                envelope = Envelope.model_validate(message)
            except PydanticValidationError:
                logger.warning("embed_message_dropped", reason="invalid")
                return False

        mailbox = self._mailboxes.get(envelope.session_id)
        if mailbox is None:
            logger.info(
                "embed_message_dropped",
                reason="unknown_session",
                session_id=envelope.session_id,
                message_type=envelope.type.value,
            )
            return False

        try:
            accepted = mailbox.put(envelope)
        except MailboxFullError:
            logger.warning(
                "embed_message_dropped",
                reason="mailbox_full",
                session_id=envelope.session_id,
                message_type=envelope.type.value,
            )
            return False

        if not accepted:
            logger.debug(
                "embed_message_dropped",
                reason="duplicate",
                session_id=envelope.session_id,
                message_id=envelope.message_id,
            )
        return accepted

    def dispatch(self, session_id: str) -> int:
        """
        Deliver queued messages for a session until its mailbox is empty.

        Messages posted by handlers during dispatch are delivered in the same
        loop. Returns the number of envelopes delivered.
        """
        delivered = 0
        while True:
            mailbox = self._mailboxes.get(session_id)
            if mailbox is None:
                return delivered
            envelope = mailbox.get()
            if envelope is None:
                return delivered

            with self._lock:
                handlers = list(self._handlers.get(session_id, {}).get(envelope.type, []))
            for handler in handlers:
                try:
                    handler(envelope)
                except Exception:
                    logger.exception(
                        "embed_handler_failed",
                        session_id=session_id,
                        message_type=envelope.type.value,
                    )
            delivered += 1

    def close_session(self, session_id: str) -> None:
        with self._lock:
            self._mailboxes.pop(session_id, None)
            self._handlers.pop(session_id, None)
        logger.debug("embed_session_closed", session_id=session_id)
