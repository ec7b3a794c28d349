"""
Live progress reporting and cancellation for a survey run.

The running survey mutates a ProgressState; every change is turned into a
ProgressMessage and published on a ProgressChannel, which fans it out to any
number of subscribers (the SSE endpoint, the CLI printer).
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import SurveyCancelled

logger = logging.getLogger(__name__)

UPDATE = 'update'
DONE = 'done'

PLACEHOLDER_RATE = '-/- Mbps'


@dataclass
class ProgressMessage:
    """Transport-agnostic progress event."""
    type: str
    header: str
    status: str
    tcp_enabled: bool
    udp_enabled: bool
    progress: int

    @property
    def done(self) -> bool:
        return self.type == DONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'header': self.header,
            'status': self.status,
            'tcpEnabled': self.tcp_enabled,
            'udpEnabled': self.udp_enabled,
            'progress': self.progress,
        }


@dataclass
class ProgressState:
    """Display state of the running survey."""
    type: str = UPDATE
    header: str = 'Measurement beginning'
    strength: str = '-'
    tcp: str = PLACEHOLDER_RATE
    udp: str = PLACEHOLDER_RATE
    tcp_enabled: bool = True
    udp_enabled: bool = True
    progress: int = 0

    def reset(self, tcp_enabled: bool, udp_enabled: bool) -> None:
        """Return to the initial snapshot for a new run."""
        self.type = UPDATE
        self.header = 'Measurement beginning'
        self.strength = '-'
        self.tcp = PLACEHOLDER_RATE
        self.udp = PLACEHOLDER_RATE
        self.tcp_enabled = tcp_enabled
        self.udp_enabled = udp_enabled
        self.progress = 0

    def advance(self, progress: float) -> None:
        """Move progress forward; it never goes back within a run."""
        self.progress = max(self.progress, min(100, int(math.floor(progress + 0.5))))

    def status_lines(self) -> List[str]:
        strength = self.strength
        if strength != '-':
            strength += '%'
        lines = [f"Signal strength: {strength}"]
        if self.tcp_enabled:
            lines.append(f"TCP: {self.tcp}")
        if self.udp_enabled:
            lines.append(f"UDP: {self.udp}")
        return lines

    def message(self, status: Optional[str] = None) -> ProgressMessage:
        return ProgressMessage(
            type=self.type,
            header=self.header,
            status=status if status is not None else '\n'.join(self.status_lines()),
            tcp_enabled=self.tcp_enabled,
            udp_enabled=self.udp_enabled,
            progress=self.progress
        )


class ProgressChannel:
    """Broadcasts progress messages to subscribers in publish order."""

    def __init__(self):
        self._subscribers: List[asyncio.Queue] = []
        self.last_message: Optional[ProgressMessage] = None

    def publish(self, message: ProgressMessage) -> None:
        self.last_message = message
        logger.debug("progress %s %d%% %s", message.type, message.progress, message.header)
        for queue in self._subscribers:
            queue.put_nowait(message)

    def subscribe(self, replay_last: bool = True) -> asyncio.Queue:
        """
        Register a queue that receives every message published from now on.

        With replay_last the queue starts with the latest message of the run
        in progress. The done message of a finished run is never replayed, so
        an observer attached between runs only sees the next run.
        """
        queue: asyncio.Queue = asyncio.Queue()
        if replay_last and self.last_message is not None and not self.last_message.done:
            queue.put_nowait(self.last_message)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def close(self) -> None:
        """Wake every subscriber with None so streams can end."""
        for queue in self._subscribers:
            queue.put_nowait(None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class SurveyContext:
    """State shared by the orchestrator and the bandwidth runner for one run."""

    def __init__(self, channel: ProgressChannel):
        self.channel = channel
        self.state = ProgressState()
        self._cancelled = False
        self._finished = False

    def cancel(self) -> None:
        """Request cancellation; honored at the next checkpoint."""
        self._cancelled = True

    def check_cancelled(self) -> None:
        if self._cancelled:
            raise SurveyCancelled()

    def publish(self) -> None:
        self.channel.publish(self.state.message())

    def finish(self, header: str, status: Optional[str] = None) -> None:
        """Publish the single terminal message of the run."""
        if self._finished:
            logger.warning("Run already finished, ignoring terminal state %r", header)
            return
        self._finished = True
        self.state.type = DONE
        self.state.header = header
        self.state.advance(100)
        self.channel.publish(self.state.message(status))
