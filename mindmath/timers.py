"""
Session timers for the MindMath quiz.
Handles the per-session countdown and the per-question speed-round auto-submit.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

# Set up logger for timer operations
logger = logging.getLogger(__name__)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        # No running event loop
        return None


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(channel_id: str, kind: str, duration: float) -> None:
        """Log timer start."""
        logger.info(
            f"Timer lifecycle: START - Channel {channel_id}, Kind {kind}, Duration {duration}s",
            extra={
                'event_type': 'timer_start',
                'channel_id': channel_id,
                'timer_kind': kind,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(channel_id: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - Channel {channel_id}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'channel_id': channel_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(channel_id: str, kind: str, completion_type: str) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Channel {channel_id}, Kind {kind}, Type {completion_type}",
            extra={
                'event_type': 'timer_completed',
                'channel_id': channel_id,
                'timer_kind': kind,
                'completion_type': completion_type,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(channel_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Channel {channel_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'channel_id': channel_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(channel_id: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Channel {channel_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'channel_id': channel_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Countdown that fires a tick callback once per interval."""

    def __init__(self, channel_id: str = None, interval: float = 1.0):
        """Initialize the timer."""
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = 0
        self._is_cancelled = False
        self._channel_id = channel_id
        self._interval = interval
        self._total_duration = 0

    async def start_countdown(
        self,
        duration: int,
        tick_callback: Callable[[int], Awaitable[Any]],
        completion_callback: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> None:
        """
        Count down from duration, one tick per interval.

        Args:
            duration: Number of ticks
            tick_callback: Awaited after each interval with the remaining ticks
            completion_callback: Awaited once when the countdown expires naturally
        """
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False

        TimerLifecycleLogger.log_timer_start(self._channel_id, "countdown", duration)

        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                await asyncio.sleep(self._interval)
                if self._is_cancelled:
                    break
                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(
                    self._channel_id,
                    self._remaining_time,
                    self._total_duration
                )
                await tick_callback(self._remaining_time)

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._channel_id, "countdown", "cancelled")
            else:
                TimerLifecycleLogger.log_timer_completion(self._channel_id, "countdown", "natural_expiry")
                if completion_callback is not None:
                    await completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._channel_id, "countdown", "asyncio_cancelled")
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._channel_id,
                "countdown_execution_error",
                str(e),
                "start_countdown"
            )
            raise

    def cancel(self) -> None:
        """Cancel the countdown. Safe to call from inside the tick callback."""
        self._is_cancelled = True
        if self._task and not self._task.done() and self._task is not _current_task():
            self._task.cancel()
            TimerLifecycleLogger.log_timer_state_transition(
                self._channel_id, "running", "cancelled", "task cancelled"
            )
        else:
            TimerLifecycleLogger.log_timer_state_transition(
                self._channel_id, "running", "cancelled", "flag set"
            )

    @property
    def is_cancelled(self) -> bool:
        """Check if timer is cancelled."""
        return self._is_cancelled

    @property
    def remaining_time(self) -> int:
        """Get remaining ticks."""
        return self._remaining_time

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._is_cancelled


class AutoSubmitTimer:
    """One-shot delayed callback bound to the question it was armed for."""

    def __init__(self, channel_id: str, token: int, delay: float):
        self._channel_id = channel_id
        self._token = token
        self._delay = delay
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False

    def start(self, callback: Callable[[int], Awaitable[Any]]) -> asyncio.Task:
        """Schedule callback(token) after the delay on the running loop."""
        TimerLifecycleLogger.log_timer_start(self._channel_id, "auto_submit", self._delay)
        self._task = asyncio.create_task(self._run(callback))
        return self._task

    async def _run(self, callback: Callable[[int], Awaitable[Any]]) -> None:
        try:
            await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            TimerLifecycleLogger.log_timer_completion(self._channel_id, "auto_submit", "cancelled")
            raise
        if self._is_cancelled:
            return
        TimerLifecycleLogger.log_timer_completion(self._channel_id, "auto_submit", "fired")
        await callback(self._token)

    def cancel(self) -> None:
        self._is_cancelled = True
        if self._task and not self._task.done() and self._task is not _current_task():
            self._task.cancel()

    @property
    def token(self) -> int:
        return self._token

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled


class SessionTimers:
    """Per-channel registry of countdown and auto-submit timers."""

    def __init__(self):
        self._countdowns: Dict[str, QuizTimer] = {}
        self._auto_submits: Dict[str, AutoSubmitTimer] = {}
        # Cancelled tasks that have not finished unwinding yet
        self._stopping: Set[asyncio.Task] = set()

    def _track_stopping(self, task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is _current_task():
            return
        self._stopping.add(task)
        task.add_done_callback(self._stopping.discard)

    async def wait_stopped(self) -> int:
        """
        Wait for every cancelled timer task to finish.

        Returns:
            Number of tasks waited for
        """
        pending = [task for task in self._stopping if task is not _current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)

    def start_countdown(
        self,
        channel_id: str,
        duration: int,
        tick_callback: Callable[[int], Awaitable[Any]],
        interval: float = 1.0
    ) -> QuizTimer:
        """
        Start the session countdown for a channel, replacing any running one.

        Must be called from a running event loop.
        """
        if channel_id in self._countdowns:
            logger.warning(
                f"Replacing existing countdown for channel {channel_id}",
                extra={'event_type': 'timer_replaced', 'channel_id': channel_id, 'timestamp': time.time()}
            )
            self.cancel_countdown(channel_id)

        timer = QuizTimer(channel_id, interval)
        self._countdowns[channel_id] = timer
        timer._task = asyncio.create_task(timer.start_countdown(duration, tick_callback))
        timer._task.add_done_callback(lambda task: self._forget_countdown(channel_id, timer))
        return timer

    def _forget_countdown(self, channel_id: str, timer: QuizTimer) -> None:
        if self._countdowns.get(channel_id) is timer:
            del self._countdowns[channel_id]

    def cancel_countdown(self, channel_id: str) -> bool:
        """
        Cancel the countdown for a channel.

        Returns:
            True if a countdown was cancelled, False if none was registered
        """
        timer = self._countdowns.pop(channel_id, None)
        if timer is None:
            return False
        self._track_stopping(timer._task)
        timer.cancel()
        return True

    def arm_auto_submit(
        self,
        channel_id: str,
        token: int,
        delay: float,
        callback: Callable[[int], Awaitable[Any]]
    ) -> AutoSubmitTimer:
        """Arm the speed-round auto-submit for a question, cancelling the previous one."""
        self.cancel_auto_submit(channel_id)
        timer = AutoSubmitTimer(channel_id, token, delay)
        self._auto_submits[channel_id] = timer
        timer.start(callback)
        return timer

    def cancel_auto_submit(self, channel_id: str) -> bool:
        timer = self._auto_submits.pop(channel_id, None)
        if timer is None:
            return False
        self._track_stopping(timer._task)
        timer.cancel()
        TimerLifecycleLogger.log_timer_state_transition(
            channel_id, "armed", "cancelled", f"auto-submit for question {timer.token} superseded"
        )
        return True

    def cancel_all(self, channel_id: str) -> None:
        self.cancel_countdown(channel_id)
        self.cancel_auto_submit(channel_id)

    def get_timer_status(self, channel_id: str) -> Optional[Dict[str, Any]]:
        """
        Get timer status for a channel.

        Returns:
            Dictionary with timer status, None if no timer is registered
        """
        countdown = self._countdowns.get(channel_id)
        auto_submit = self._auto_submits.get(channel_id)
        if countdown is None and auto_submit is None:
            return None
        return {
            'countdown_running': countdown is not None and countdown.is_running,
            'remaining_time': countdown.remaining_time if countdown else None,
            'auto_submit_token': auto_submit.token if auto_submit else None,
        }
