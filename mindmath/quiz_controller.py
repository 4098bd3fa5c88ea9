"""
Quiz session controller for MindMath.
Owns session state per channel, drives the session timers, and reports
state changes to a listener (the chat front end).
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

from .config_manager import ConfigManager
from .models import Question, SessionConfig, SessionPhase, SessionState, SessionSummary
from .question_generator import generate
from .session import (
    Configure,
    InvalidTransitionError,
    Quit,
    Reset,
    SpeedRoundTimeout,
    Start,
    Submit,
    Tick,
    reduce,
    summarize,
)
from .timers import SessionTimers


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionConflictError(QuizControllerError):
    """Raised when attempting to create a session while one is being played."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class InvalidSessionStateError(QuizControllerError):
    """Raised when session is in an invalid state for the requested operation."""
    pass


class SessionListener:
    """
    Receives session updates from the controller.

    The default implementation ignores everything; front ends override the
    hooks they render.
    """

    async def on_question(self, channel_id: int, state: SessionState) -> None:
        pass

    async def on_answer(self, channel_id: int, question: Question, correct: bool,
                        state: SessionState, timed_out: bool) -> None:
        pass

    async def on_tick(self, channel_id: int, state: SessionState) -> None:
        pass

    async def on_finished(self, channel_id: int, summary: SessionSummary) -> None:
        pass


class QuizController:
    """
    Orchestrates practice sessions across channels.

    Each channel holds at most one session. Every change goes through
    ``dispatch``, which applies the session state machine, reconciles the
    countdown and speed-round timers, and notifies the listener.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        listener: Optional[SessionListener] = None,
        question_factory: Optional[Callable[[SessionConfig], Question]] = None,
        tick_interval: float = 1.0
    ):
        """
        Initialize the quiz controller.

        Args:
            config_manager: Source of default session settings
            listener: Receives question, answer, tick and finish updates
            question_factory: Builds questions for a config, defaults to the generator
            tick_interval: Real seconds per quiz second
        """
        self.logger = logging.getLogger(__name__)
        self.config_manager = config_manager
        self.listener = listener or SessionListener()
        self.timers = SessionTimers()
        self._question_factory = question_factory or generate
        self._tick_interval = tick_interval

        self._sessions: Dict[int, SessionState] = {}

        self.logger.info("QuizController initialized")

    def create_session(self, channel_id: int, config: Optional[SessionConfig] = None) -> SessionState:
        """
        Create a setup-phase session for the channel, replacing a finished one.

        Args:
            channel_id: Channel identifier
            config: Session settings, uses the config manager's settings if None

        Returns:
            The new setup-phase state

        Raises:
            SessionConflictError: If a session is being played in the channel
        """
        existing = self._sessions.get(channel_id)
        if existing is not None and existing.phase is SessionPhase.PLAYING:
            raise SessionConflictError(f"Quiz already running in channel {channel_id}")

        if config is None:
            config = self.config_manager.get_session_config()

        state = SessionState.initial(config)
        self._sessions[channel_id] = state
        self.logger.info(
            f"Created session for channel {channel_id}: difficulty={config.difficulty.value}, "
            f"questions={config.question_count}, time_limit={config.time_limit_seconds}s",
            extra={
                'event_type': 'session_created',
                'channel_id': channel_id,
                'timestamp': time.time()
            }
        )
        return state

    def get_session(self, channel_id: int) -> Optional[SessionState]:
        return self._sessions.get(channel_id)

    def has_active_session(self, channel_id: int) -> bool:
        """Check if a session is being played in the channel."""
        state = self._sessions.get(channel_id)
        return state is not None and state.phase is SessionPhase.PLAYING

    async def dispatch(self, channel_id: int, event) -> SessionState:
        """
        Apply an event to the channel's session.

        Args:
            channel_id: Channel identifier
            event: Session event

        Returns:
            The resulting session state

        Raises:
            SessionNotFoundError: If the channel has no session
            InvalidSessionStateError: If the event is not allowed in the current phase
        """
        previous = self._sessions.get(channel_id)
        if previous is None:
            raise SessionNotFoundError(f"No session for channel {channel_id}")

        try:
            state = reduce(previous, event, self._question_factory)
        except InvalidTransitionError as e:
            raise InvalidSessionStateError(str(e)) from e

        if state is previous:
            return state

        self._sessions[channel_id] = state
        if state.phase is not previous.phase:
            self.logger.info(
                f"Session for channel {channel_id}: {previous.phase.value} -> {state.phase.value}",
                extra={
                    'event_type': 'session_transition',
                    'channel_id': channel_id,
                    'from_phase': previous.phase.value,
                    'to_phase': state.phase.value,
                    'trigger': type(event).__name__,
                    'timestamp': time.time()
                }
            )

        self._sync_timers(channel_id, previous, state)
        await self._notify(channel_id, previous, state, event)
        return state

    def _sync_timers(self, channel_id: int, previous: SessionState, state: SessionState) -> None:
        key = str(channel_id)

        if state.phase is not SessionPhase.PLAYING:
            if previous.phase is SessionPhase.PLAYING:
                self.timers.cancel_all(key)
            return

        if previous.phase is not SessionPhase.PLAYING:
            self.timers.start_countdown(
                key,
                state.config.time_limit_seconds,
                lambda remaining: self._on_tick(channel_id),
                interval=self._tick_interval
            )

        if state.question_number != previous.question_number:
            # A new question supersedes the pending auto-submit
            self.timers.cancel_auto_submit(key)
            if state.config.speed_round:
                self.timers.arm_auto_submit(
                    key,
                    state.question_number,
                    state.config.speed_round_seconds * self._tick_interval,
                    lambda token: self._on_auto_submit(channel_id, token)
                )

    async def _on_tick(self, channel_id: int) -> None:
        if channel_id not in self._sessions:
            self.logger.debug(f"Tick for channel {channel_id} arrived after session teardown")
            return
        await self.dispatch(channel_id, Tick())

    async def _on_auto_submit(self, channel_id: int, token: int) -> None:
        if channel_id not in self._sessions:
            self.logger.debug(f"Auto-submit for channel {channel_id} arrived after session teardown")
            return
        await self.dispatch(channel_id, SpeedRoundTimeout(token))

    async def _notify(self, channel_id: int, previous: SessionState, state: SessionState, event) -> None:
        try:
            if state.answered > previous.answered:
                await self.listener.on_answer(
                    channel_id,
                    previous.current_question,
                    state.score > previous.score,
                    state,
                    isinstance(event, SpeedRoundTimeout)
                )

            if state.phase is SessionPhase.FINISHED and previous.phase is not SessionPhase.FINISHED:
                await self.listener.on_finished(channel_id, summarize(state))
            elif state.phase is SessionPhase.PLAYING:
                if state.question_number != previous.question_number:
                    await self.listener.on_question(channel_id, state)
                elif state.time_remaining != previous.time_remaining:
                    await self.listener.on_tick(channel_id, state)
        except Exception as e:
            self.logger.error(f"Listener failed for channel {channel_id}: {e}", exc_info=True)

    async def start_quiz(self, channel_id: int, config: Optional[SessionConfig] = None) -> Dict[str, Any]:
        """
        Start a session with comprehensive error handling.

        A finished session is reset first; a setup session takes the given config.

        Args:
            channel_id: Channel identifier
            config: Session settings, uses the config manager's settings if None

        Returns:
            Dictionary with operation results and error information
        """
        try:
            state = self._sessions.get(channel_id)
            if state is None:
                self.create_session(channel_id, config)
            elif state.phase is SessionPhase.PLAYING:
                raise SessionConflictError(f"Quiz already running in channel {channel_id}")
            else:
                if state.phase is SessionPhase.FINISHED:
                    await self.dispatch(channel_id, Reset())
                await self.dispatch(channel_id, Configure(config or self.config_manager.get_session_config()))

            await self.dispatch(channel_id, Start())

            return {
                'success': True,
                'message': f"Quiz started in channel {channel_id}",
                'session_info': self.get_session_progress(channel_id)
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "start_quiz")

    async def submit_answer(self, channel_id: int, text: str) -> Dict[str, Any]:
        """
        Submit typed answer text for the current question.

        Returns:
            Dictionary with correctness, the expected answer and running score
        """
        try:
            previous = self._sessions.get(channel_id)
            if previous is None:
                raise SessionNotFoundError(f"No session for channel {channel_id}")
            question = previous.current_question

            state = await self.dispatch(channel_id, Submit(text))
            finished = state.phase is SessionPhase.FINISHED

            return {
                'success': True,
                'correct': state.score > previous.score,
                'question': question.prompt if question else None,
                'expected_answer': question.answer if question else None,
                'score': state.score,
                'answered': state.answered,
                'finished': finished,
                'summary': summarize(state) if finished else None
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "submit_answer")

    async def quit_quiz(self, channel_id: int) -> Dict[str, Any]:
        """
        Finish the running session early.

        Returns:
            Dictionary with operation results and the final summary
        """
        try:
            state = await self.dispatch(channel_id, Quit())
            return {
                'success': True,
                'message': f"Quiz quit in channel {channel_id}",
                'summary': summarize(state)
            }
        except Exception as e:
            return self._handle_session_error(channel_id, e, "quit_quiz")

    async def reset_quiz(self, channel_id: int) -> Dict[str, Any]:
        """
        Return a finished session to setup, discarding its score.

        Returns:
            Dictionary with operation results
        """
        try:
            await self.dispatch(channel_id, Reset())
            return {
                'success': True,
                'message': f"Session reset to setup in channel {channel_id}",
                'session_info': self.get_session_progress(channel_id)
            }
        except Exception as e:
            return self._handle_session_error(channel_id, e, "reset_quiz")

    def stop_session(self, channel_id: int) -> bool:
        """
        Tear down a channel's session and cancel its timers.

        Returns:
            True if a session was removed, False if none existed
        """
        self.timers.cancel_all(str(channel_id))
        state = self._sessions.pop(channel_id, None)

        if state is None:
            self.logger.warning(
                f"Cannot stop session for channel {channel_id}: no session exists",
                extra={
                    'event_type': 'session_stop_no_session',
                    'channel_id': channel_id,
                    'timestamp': time.time()
                }
            )
            return False

        self.logger.info(
            f"Stopped and cleaned up session for channel {channel_id}",
            extra={
                'event_type': 'session_stopped',
                'channel_id': channel_id,
                'timestamp': time.time()
            }
        )
        return True

    def shutdown(self) -> int:
        """
        Tear down every session.

        Returns:
            Number of sessions removed
        """
        channel_ids = list(self._sessions)
        for channel_id in channel_ids:
            self.stop_session(channel_id)
        return len(channel_ids)

    async def aclose(self) -> int:
        """
        Tear down every session and wait for the cancelled timers to finish.

        Returns:
            Number of sessions removed
        """
        stopped = self.shutdown()
        waited = await self.timers.wait_stopped()
        self.logger.info(
            f"Controller closed: {stopped} sessions, {waited} timer tasks awaited",
            extra={
                'event_type': 'controller_closed',
                'sessions_stopped': stopped,
                'timers_awaited': waited,
                'timestamp': time.time()
            }
        )
        return stopped

    def get_session_progress(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """
        Get progress information for a session.

        Returns:
            Dictionary with progress info, None if the channel has no session
        """
        state = self._sessions.get(channel_id)
        if state is None:
            return None

        config = state.config
        return {
            'phase': state.phase.value,
            'question': state.current_question.prompt if state.current_question else None,
            'current_question': min(state.answered + 1, config.question_count),
            'total_questions': config.question_count,
            'score': state.score,
            'answered': state.answered,
            'time_remaining': state.time_remaining,
            'finish_reason': state.finish_reason.value if state.finish_reason else None,
            'settings': {
                'difficulty': config.difficulty.value,
                'operations': [op.symbol for op in config.ordered_operations],
                'question_count': config.question_count,
                'time_limit': config.time_limit_seconds,
                'allow_negatives': config.allow_negatives,
                'allow_decimals': config.allow_decimals,
                'speed_round_seconds': config.speed_round_seconds
            }
        }

    def get_summary(self, channel_id: int) -> Optional[SessionSummary]:
        state = self._sessions.get(channel_id)
        if state is None:
            return None
        return summarize(state)

    def get_session_status_summary(self, channel_id: int) -> str:
        """
        Get a human-readable status line for the channel.
        """
        progress = self.get_session_progress(channel_id)
        if progress is None:
            return "No quiz in this channel. Use `/start` to begin."

        if progress['phase'] == SessionPhase.SETUP.value:
            return "Quiz is set up and ready. Use `/start` to begin."

        if progress['phase'] == SessionPhase.PLAYING.value:
            return (
                f"Question {progress['current_question']} of {progress['total_questions']}: "
                f"{progress['question']}\n"
                f"Score: {progress['score']} / {progress['answered']} | "
                f"Time remaining: {progress['time_remaining']} seconds"
            )

        summary = self.get_summary(channel_id)
        return (
            f"Quiz finished ({progress['finish_reason']}). "
            f"Score: {summary.score} / {summary.answered} | Accuracy: {summary.accuracy_text}"
        )

    def _handle_session_error(self, channel_id: int, error: Exception, operation: str) -> Dict[str, Any]:
        """
        Log a session error and build the failure result.

        Returns:
            Dictionary with error handling results
        """
        error_msg = f"Error in {operation} for channel {channel_id}: {error}"
        if isinstance(error, (QuizControllerError, ValueError)):
            self.logger.warning(error_msg)
        else:
            self.logger.error(error_msg, exc_info=True)

        return {
            'success': False,
            'error': str(error),
            'operation': operation,
            'user_message': self._get_user_friendly_error_message(error, operation)
        }

    def _get_user_friendly_error_message(self, error: Exception, operation: str) -> str:
        """
        Generate user-friendly error messages.
        """
        if isinstance(error, SessionConflictError):
            return "❌ A quiz is already running in this channel. Answer it or use `/quit` first."

        elif isinstance(error, SessionNotFoundError):
            return "❌ No quiz found in this channel. Start one with `/start`."

        elif isinstance(error, InvalidSessionStateError):
            if operation == "reset_quiz":
                return "❌ Only a finished quiz can be reset."
            return "❌ No quiz is running in this channel. Start one with `/start`."

        elif isinstance(error, ValueError):
            return f"❌ Invalid quiz settings: {error}"

        else:
            return f"❌ An unexpected error occurred during {operation}. Please try again."
