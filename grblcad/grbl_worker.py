"""GRBL serial communication worker.

This module owns the serial link to a GRBL controller: the single
serialized writer (realtime bytes first, then queued lines), the read loop
that classifies incoming lines, and the bookkeeping that pairs every
``ok``/``error`` with the line it answers.
"""

import logging
import threading
from collections import deque
from typing import Any, Callable, Optional

import serial

from .events import EventBus
from .frame_parser import FrameParser
from .grbl_settings import SettingsStore
from .grbl_worker_commands import GrblWorkerCommandMixin
from .grbl_worker_connection import GrblWorkerConnectionMixin
from .grbl_worker_status import GrblWorkerStatusMixin
from .status_model import StatusModel
from .types import (
    ConnectionState,
    GrblEvent,
    LogLine,
    PendingLine,
    SettingFrame,
    StatusFrame,
    TxItem,
)
from .utils.constants import (
    ERROR_NOT_CONNECTED,
    EVENT_QUEUE_TIMEOUT,
    LINE_TERMINATOR,
    MAX_LINE_LENGTH,
    RT_RESET,
    RT_STATUS,
    SERIAL_READ_CHUNK,
    SETTINGS_REFRESH_DELAY,
    STATUS_POLL_DEFAULT,
    STATUS_QUERY_FAILURE_LIMIT_DEFAULT,
)
from .utils.exceptions import NotConnectedError
from .utils.grbl_errors import annotate_grbl_message
from .utils.logging_config import get_serial_logger

logger = logging.getLogger(__name__)


class GrblWorker(
    GrblWorkerConnectionMixin,
    GrblWorkerStatusMixin,
    GrblWorkerCommandMixin,
):
    """Manages serial communication with GRBL controller.
    
    This class handles:
    - Connection lifecycle (closed -> open -> closed)
    - A priority write path: realtime bytes always go out before queued lines
    - Status polling
    - Matching acknowledgments to the lines that caused them
    
    Every consumer listens on ``events`` (see ``EventBus``); nothing is
    delivered through per-consumer callbacks on the worker itself.
    
    Example:
        with GrblWorker() as worker:
            q = worker.events.subscribe_queue()
            worker.open('COM3')
            worker.home()
    """
    
    def __init__(
        self,
        events: Optional[EventBus] = None,
        *,
        serial_factory: Optional[Callable[..., Any]] = None,
        settings_refresh_delay: float = SETTINGS_REFRESH_DELAY,
    ):
        """Initialize GRBL worker.
        
        Args:
            events: Event channel to publish on (a new one by default)
            serial_factory: Callable used to open the port; defaults to
                ``serial.serial_for_url`` so device paths and pyserial URLs
                (``loop://``, ``rfc2217://``) both work
            settings_refresh_delay: Seconds between a setting write and its
                confirming ``$$``
        """
        self.events = events if events is not None else EventBus()
        self.ser: Optional[Any] = None
        self._serial_factory = serial_factory or serial.serial_for_url
        self._serial_log = get_serial_logger()
        
        # Worker threads
        self._rx_thread: Optional[threading.Thread] = None
        self._tx_thread: Optional[threading.Thread] = None
        self._status_thread: Optional[threading.Thread] = None
        self._stop_evt = threading.Event()
        
        # Write path
        self._tx_cond = threading.Condition()
        self._realtime_q: deque[TxItem] = deque()
        self._line_q: deque[TxItem] = deque()
        self._write_lock = threading.Lock()
        
        # Lines written but not yet answered, oldest first
        self._pending_lock = threading.Lock()
        self._pending: deque[PendingLine] = deque()
        
        # Inbound
        self.parser = FrameParser()
        self.status = StatusModel()
        self.settings = SettingsStore(self, settings_refresh_delay)
        
        # State flags
        self._lifecycle_lock = threading.RLock()
        self._state = ConnectionState.CLOSED
        self._port_name: Optional[str] = None
        self._stream_owner: Optional[str] = None
        self._ready = False
        self._alarm_active = False
        self._status_interval_lock = threading.Lock()
        self._status_poll_interval = STATUS_POLL_DEFAULT
        self._status_query_failures = 0
        self._status_query_failure_limit = STATUS_QUERY_FAILURE_LIMIT_DEFAULT
    
    # ========================================================================
    # CONTEXT MANAGER SUPPORT
    # ========================================================================
    
    def __enter__(self):
        """Context manager entry."""
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures cleanup."""
        self.close()
        return False  # Don't suppress exceptions
    
    # ========================================================================
    # EVENTS
    # ========================================================================
    
    def subscribe(self, callback: Callable[[GrblEvent], None]) -> Callable[[], None]:
        return self.events.subscribe(callback)
    
    def _publish(self, *event: Any) -> None:
        self.events.publish(tuple(event))
    
    @property
    def connection_state(self) -> ConnectionState:
        return self._state
    
    @property
    def alarm_active(self) -> bool:
        return self._alarm_active
    
    def pending_count(self) -> int:
        """Number of lines written that still await ok/error."""
        with self._pending_lock:
            return len(self._pending)
    
    # ========================================================================
    # WRITE PATH
    # ========================================================================
    
    def _encode_line_payload(self, line: str) -> bytes:
        """Encode line for serial transmission.
        
        Args:
            line: G-code line, with or without its terminator
            
        Returns:
            Encoded bytes ending in exactly one newline
        """
        return (line.strip() + LINE_TERMINATOR).encode("utf-8", errors="replace")
    
    def write_line(self, line: str, *, tag: str | None = None, index: int | None = None) -> None:
        """Queue one line for transmission.
        
        Args:
            line: Command text; a trailing newline is not duplicated
            tag: Owner label echoed back in the matching ``ack`` event
            index: Optional job line index echoed back the same way
            
        Raises:
            NotConnectedError: If the link is closed
        """
        if not self.is_connected():
            raise NotConnectedError(ERROR_NOT_CONNECTED)
        text = line.strip()
        payload = self._encode_line_payload(text)
        if len(payload) > MAX_LINE_LENGTH:
            logger.warning(f"Line exceeds {MAX_LINE_LENGTH} bytes and may be rejected: {text}")
        with self._tx_cond:
            self._line_q.append(TxItem(payload, text, tag, index))
            self._tx_cond.notify_all()
    
    def write_realtime(self, data: bytes) -> None:
        """Queue realtime byte(s) ahead of every pending line (no newline).
        
        Real-time commands are processed immediately by GRBL without
        waiting for buffer space or acknowledgment.
        
        Raises:
            NotConnectedError: If the link is closed
        """
        if not self.is_connected():
            raise NotConnectedError(ERROR_NOT_CONNECTED)
        item = TxItem(bytes(data), repr(bytes(data)), realtime=True)
        with self._tx_cond:
            self._realtime_q.append(item)
            self._tx_cond.notify_all()
    
    def soft_reset(self) -> None:
        """Drop unsent lines and outstanding acks, then send Ctrl-X."""
        self._clear_outgoing()
        with self._pending_lock:
            self._pending.clear()
        self._ready = False
        self._alarm_active = False
        self.write_realtime(RT_RESET)
        logger.info("Soft reset sent")
    
    def _clear_outgoing(self) -> None:
        """Clear the outgoing line queue."""
        with self._tx_cond:
            self._line_q.clear()
    
    def _write_payload(self, payload: bytes) -> None:
        ser = self.ser
        if ser is None:
            raise NotConnectedError(ERROR_NOT_CONNECTED)
        with self._write_lock:
            total = 0
            length = len(payload)
            while total < length:
                written = ser.write(payload[total:])
                if written is None:
                    written = 0
                if written <= 0:
                    raise serial.SerialTimeoutException("Write returned 0 bytes")
                total += written
    
    def _drop_pending(self, item: TxItem) -> None:
        with self._pending_lock:
            for entry in reversed(self._pending):
                if entry.text == item.text and entry.tag == item.tag and entry.index == item.index:
                    self._pending.remove(entry)
                    break
    
    def _send_item(self, item: TxItem) -> None:
        if not item.realtime:
            # registered before the bytes leave so the reply cannot outrun it
            with self._pending_lock:
                self._pending.append(PendingLine(item.text, item.tag, item.index))
        try:
            self._write_payload(item.payload)
        except serial.SerialTimeoutException as e:
            logger.error(f"Write timeout: {e}")
            if not item.realtime:
                self._drop_pending(item)
                self._publish("tx_error", item.tag, item.index, item.text, f"Write timeout: {e}")
            elif item.payload == RT_STATUS:
                self._note_status_query_failure(e)
            else:
                self._publish("log", f"[write timeout] {item.text}: {e}")
            return
        except serial.SerialException as e:
            logger.error(f"Serial write error: {e}")
            if not item.realtime:
                self._drop_pending(item)
                self._publish("tx_error", item.tag, item.index, item.text, f"Serial write error: {e}")
            self._signal_disconnect(f"Serial write error: {e}")
            return
        except NotConnectedError:
            return
        
        if item.payload == RT_STATUS:
            self._status_query_failures = 0
            return
        self._serial_log.debug(f"TX {item.text}")
        if not item.realtime:
            self._publish("tx", item.tag, item.index, item.text)
    
    # ========================================================================
    # WORKER THREAD LOOPS
    # ========================================================================
    
    def _next_tx_item(self, stop_evt: threading.Event) -> Optional[TxItem]:
        with self._tx_cond:
            while not stop_evt.is_set():
                if self._realtime_q:
                    return self._realtime_q.popleft()
                if self._line_q:
                    return self._line_q.popleft()
                self._tx_cond.wait(EVENT_QUEUE_TIMEOUT)
        return None
    
    def _tx_loop(self, stop_evt: threading.Event) -> None:
        """Transmit thread - the only code that writes to the port.
        
        Args:
            stop_evt: Event to signal thread shutdown
        """
        logger.debug("TX thread started")
        
        try:
            while not stop_evt.is_set():
                item = self._next_tx_item(stop_evt)
                if item is None:
                    break
                self._send_item(item)
        
        except Exception as e:
            logger.error(f"TX thread error: {e}", exc_info=True)
            self._emit_exception("TX thread error", e)
            self._signal_disconnect(f"TX thread error: {e}")
            stop_evt.set()
        
        finally:
            logger.debug("TX thread stopped")
    
    def _rx_loop(self, stop_evt: threading.Event) -> None:
        """Receive thread - reads from GRBL and processes responses.
        
        Args:
            stop_evt: Event to signal thread shutdown
        """
        logger.debug("RX thread started")
        
        try:
            while not stop_evt.is_set():
                ser = self.ser
                if ser is None:
                    break
                
                try:
                    chunk = ser.read(SERIAL_READ_CHUNK)
                except serial.SerialException as e:
                    if stop_evt.is_set():
                        break
                    logger.error(f"Serial read error: {e}")
                    self._publish("log", f"[read error] {e}")
                    self._signal_disconnect(f"Serial read error: {e}")
                    break
                
                if not chunk or stop_evt.is_set():
                    continue
                
                for frame in self.parser.feed(chunk):
                    self._handle_frame(frame)
        
        except Exception as e:
            logger.error(f"RX thread error: {e}", exc_info=True)
            self._emit_exception("RX thread error", e)
            self._signal_disconnect(f"RX thread error: {e}")
            stop_evt.set()
        
        finally:
            logger.debug("RX thread stopped")
    
    # ========================================================================
    # INBOUND DISPATCH
    # ========================================================================
    
    def _handle_frame(self, frame) -> None:
        """Route one classified line to the status model, settings or log."""
        if isinstance(frame, StatusFrame):
            self._serial_log.debug(f"RX {frame.raw}")
            status = self.status.apply(frame.raw)
            if status is None:
                self._publish("log", f"[status dropped] {frame.raw}")
                return
            self._handle_status_update(status)
            return
        
        if isinstance(frame, SettingFrame):
            self._serial_log.debug(f"RX {frame.raw}")
            key = self.settings.apply_setting(frame.key, frame.value)
            self._publish("setting", key, frame.value)
            return
        
        if isinstance(frame, LogLine):
            self._handle_rx_line(frame.text)
    
    def _handle_rx_line(self, line: str) -> None:
        """Handle a non-status, non-setting line from GRBL.
        
        Args:
            line: Line received from GRBL
        """
        self._serial_log.debug(f"RX {line}")
        self._publish("log_rx", line)
        
        line_lower = line.lower()
        
        # Command acknowledgment
        if line_lower == "ok" or line_lower.startswith("error"):
            self._handle_ack(line)
            return
        
        # Alarm detection
        if line_lower.startswith("alarm:"):
            self._handle_alarm(line)
            return
        
        if "[msg:" in line_lower and "reset to continue" in line_lower:
            self._handle_alarm(line)
            return
        
        # GRBL banner (power-up or after Ctrl-X)
        if line_lower.startswith("grbl"):
            self._handle_banner(line)
    
    def _handle_ack(self, line: str) -> None:
        with self._pending_lock:
            entry = self._pending.popleft() if self._pending else None
        if entry is None:
            logger.debug(f"Unmatched acknowledgment: {line}")
            return
        if line.lower().startswith("error"):
            logger.error(f"GRBL error: {annotate_grbl_message(line)} | {entry.text}")
        self._publish("ack", entry.tag, entry.index, entry.text, line)
    
    def _handle_banner(self, line: str) -> None:
        with self._pending_lock:
            lost = len(self._pending)
            self._pending.clear()
        self._ready = False
        self._alarm_active = False
        self._mark_ready()
        if lost:
            logger.warning(f"Controller reset with {lost} line(s) unacknowledged: {line}")
            self._publish("reset", line)
