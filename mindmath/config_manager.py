"""
Configuration manager for MindMath session defaults.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from .models import (
    DEFAULT_OPERATIONS,
    DEFAULT_SPEED_ROUND_SECONDS,
    Difficulty,
    Operation,
    SessionConfig,
)


class ConfigManager:
    """Manages default settings for new practice sessions."""

    # Default configuration values
    DEFAULT_DIFFICULTY = Difficulty.MEDIUM
    DEFAULT_OPERATIONS = DEFAULT_OPERATIONS
    DEFAULT_QUESTION_COUNT = 10
    DEFAULT_TIME_LIMIT = 60
    DEFAULT_SPEED_ROUND_SECONDS = DEFAULT_SPEED_ROUND_SECONDS

    # Validation limits
    MIN_QUESTION_COUNT = 1
    MAX_QUESTION_COUNT = 100
    MIN_TIME_LIMIT = 1
    MAX_TIME_LIMIT = 600  # 10 minutes
    MIN_SPEED_ROUND_SECONDS = 1
    MAX_SPEED_ROUND_SECONDS = 60

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self.reset_to_defaults()

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._difficulty = self.DEFAULT_DIFFICULTY
        self._operations = set(self.DEFAULT_OPERATIONS)
        self._question_count = self.DEFAULT_QUESTION_COUNT
        self._time_limit = self.DEFAULT_TIME_LIMIT
        self._allow_negatives = False
        self._allow_decimals = False
        self._speed_round_seconds: Optional[int] = None
        self.logger.info("All settings reset to default values")

    def get_session_config(self) -> SessionConfig:
        """
        Build a session configuration from the current settings.

        Returns:
            SessionConfig snapshot of current settings

        Raises:
            ValueError: If the current settings do not form a valid configuration
        """
        return SessionConfig(
            difficulty=self._difficulty,
            operations=frozenset(self._operations),
            question_count=self._question_count,
            time_limit_seconds=self._time_limit,
            allow_negatives=self._allow_negatives,
            allow_decimals=self._allow_decimals,
            speed_round_seconds=self._speed_round_seconds,
        )

    def _failure(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {'success': False, 'error': error_msg, 'user_message': user_message}

    def _success(self, message: str, user_message: str, **extra) -> Dict[str, Any]:
        self.logger.info(message)
        result = {'success': True, 'message': message, 'user_message': user_message}
        result.update(extra)
        return result

    def set_difficulty(self, difficulty) -> Dict[str, Any]:
        """
        Set the difficulty tier.

        Args:
            difficulty: Difficulty member or its name ("easy", "medium", "hard", "olympiad")

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(difficulty, str):
            try:
                difficulty = Difficulty(difficulty.strip().lower())
            except ValueError:
                choices = ", ".join(d.value for d in Difficulty)
                return self._failure(
                    f"Unknown difficulty: {difficulty}",
                    f"❌ Unknown difficulty '{difficulty}'. Choose one of: {choices}"
                )
        if not isinstance(difficulty, Difficulty):
            return self._failure(
                f"Difficulty must be a Difficulty, got {type(difficulty).__name__}",
                "❌ Invalid difficulty"
            )

        self._difficulty = difficulty
        return self._success(
            f"Difficulty set to {difficulty.value}",
            f"✅ Difficulty set to **{difficulty.value}** (numbers up to {difficulty.max_magnitude})"
        )

    def get_difficulty(self) -> Difficulty:
        return self._difficulty

    def set_operations(self, operations: Iterable) -> Dict[str, Any]:
        """
        Replace the set of allowed operations.

        Args:
            operations: Operation members, names or symbols, or one string
                separated by spaces or commas ("+ - sqrt")

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(operations, str):
            operations = operations.replace(",", " ").split()

        parsed = set()
        for op in operations:
            if isinstance(op, Operation):
                parsed.add(op)
                continue
            try:
                parsed.add(Operation.parse(str(op)))
            except ValueError as e:
                return self._failure(str(e), f"❌ Unknown operation '{op}'")

        if not parsed:
            return self._failure(
                "At least one operation must be selected",
                "❌ Select at least one operation"
            )

        self._operations = parsed
        symbols = " ".join(op.symbol for op in Operation if op in parsed)
        return self._success(f"Operations set to {symbols}", f"✅ Operations: {symbols}")

    def toggle_operation(self, operation) -> Dict[str, Any]:
        """
        Switch one operation on or off. The last remaining operation cannot be removed.

        Returns:
            Dictionary with success status, new value, and user-friendly message
        """
        try:
            op = operation if isinstance(operation, Operation) else Operation.parse(str(operation))
        except ValueError as e:
            return self._failure(str(e), f"❌ Unknown operation '{operation}'")

        if op in self._operations:
            if len(self._operations) == 1:
                return self._failure(
                    "Cannot remove the last selected operation",
                    "❌ At least one operation must stay selected"
                )
            self._operations.discard(op)
            return self._success(f"Operation {op.key} disabled", f"✅ {op.symbol} disabled", new_value=False)

        self._operations.add(op)
        return self._success(f"Operation {op.key} enabled", f"✅ {op.symbol} enabled", new_value=True)

    def get_operations(self) -> List[Operation]:
        return [op for op in Operation if op in self._operations]

    def set_question_count(self, count: int) -> Dict[str, Any]:
        """
        Set the number of questions per session.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        # bool is an int subclass
        if not isinstance(count, int) or isinstance(count, bool):
            return self._failure(
                f"Question count must be an integer, got {type(count).__name__}",
                f"❌ Invalid input: Expected a number, got {type(count).__name__}"
            )
        if count < self.MIN_QUESTION_COUNT:
            return self._failure(
                f"Question count must be at least {self.MIN_QUESTION_COUNT}",
                f"❌ Too few questions: Minimum is {self.MIN_QUESTION_COUNT}"
            )
        if count > self.MAX_QUESTION_COUNT:
            return self._failure(
                f"Question count cannot exceed {self.MAX_QUESTION_COUNT}",
                f"❌ Too many questions: Maximum is {self.MAX_QUESTION_COUNT}"
            )

        self._question_count = count
        return self._success(f"Question count set to {count}", f"✅ Question count set to {count}")

    def get_question_count(self) -> int:
        return self._question_count

    def set_time_limit(self, seconds: int) -> Dict[str, Any]:
        """
        Set the session time limit in seconds.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(seconds, int) or isinstance(seconds, bool):
            return self._failure(
                f"Time limit must be an integer, got {type(seconds).__name__}",
                f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            )
        if seconds < self.MIN_TIME_LIMIT:
            return self._failure(
                f"Time limit must be at least {self.MIN_TIME_LIMIT} seconds",
                f"❌ Time limit too short: Minimum is {self.MIN_TIME_LIMIT} seconds"
            )
        if seconds > self.MAX_TIME_LIMIT:
            return self._failure(
                f"Time limit cannot exceed {self.MAX_TIME_LIMIT} seconds",
                f"❌ Time limit too long: Maximum is {self.MAX_TIME_LIMIT} seconds ({self.MAX_TIME_LIMIT // 60} minutes)"
            )

        self._time_limit = seconds
        return self._success(f"Time limit set to {seconds} seconds", f"✅ Time limit set to {seconds} seconds")

    def get_time_limit(self) -> int:
        return self._time_limit

    def set_allow_negatives(self, enabled: bool) -> Dict[str, Any]:
        if not isinstance(enabled, bool):
            return self._failure(
                f"Negative numbers flag must be a boolean, got {type(enabled).__name__}",
                f"❌ Invalid input: Expected true/false, got {type(enabled).__name__}"
            )
        self._allow_negatives = enabled
        state = "enabled" if enabled else "disabled"
        return self._success(f"Negative numbers {state}", f"✅ Negative numbers {state}")

    def get_allow_negatives(self) -> bool:
        return self._allow_negatives

    def set_allow_decimals(self, enabled: bool) -> Dict[str, Any]:
        if not isinstance(enabled, bool):
            return self._failure(
                f"Decimal numbers flag must be a boolean, got {type(enabled).__name__}",
                f"❌ Invalid input: Expected true/false, got {type(enabled).__name__}"
            )
        self._allow_decimals = enabled
        state = "enabled" if enabled else "disabled"
        return self._success(f"Decimal numbers {state}", f"✅ Decimal numbers {state}")

    def get_allow_decimals(self) -> bool:
        return self._allow_decimals

    def set_speed_round(self, seconds: Optional[int]) -> Dict[str, Any]:
        """
        Enable the speed round with a per-question delay, or disable it with None.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if seconds is None:
            self._speed_round_seconds = None
            return self._success("Speed round disabled", "✅ Speed round disabled")
        if not isinstance(seconds, int) or isinstance(seconds, bool):
            return self._failure(
                f"Speed round delay must be an integer, got {type(seconds).__name__}",
                f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            )
        if not self.MIN_SPEED_ROUND_SECONDS <= seconds <= self.MAX_SPEED_ROUND_SECONDS:
            return self._failure(
                f"Speed round delay must be between {self.MIN_SPEED_ROUND_SECONDS} and "
                f"{self.MAX_SPEED_ROUND_SECONDS} seconds",
                f"❌ Speed round delay must be {self.MIN_SPEED_ROUND_SECONDS}-{self.MAX_SPEED_ROUND_SECONDS} seconds"
            )
        self._speed_round_seconds = seconds
        return self._success(
            f"Speed round enabled with {seconds} seconds per question",
            f"✅ Speed round on: {seconds} seconds per question"
        )

    def get_speed_round(self) -> Optional[int]:
        return self._speed_round_seconds

    def apply_config(self, quiz_config: Dict[str, Any]) -> List[str]:
        """
        Apply the ``quiz`` section of config.json.

        Invalid entries are logged and skipped; the defaults stay in place.

        Returns:
            List of user-facing error messages for skipped entries
        """
        setters = [
            ('default_difficulty', self.set_difficulty),
            ('default_operations', self.set_operations),
            ('default_question_count', self.set_question_count),
            ('default_time_limit', self.set_time_limit),
            ('allow_negatives', self.set_allow_negatives),
            ('allow_decimals', self.set_allow_decimals),
        ]
        errors = []
        for key, setter in setters:
            if key in quiz_config:
                result = setter(quiz_config[key])
                if not result['success']:
                    errors.append(result['user_message'])

        if quiz_config.get('speed_round'):
            result = self.set_speed_round(quiz_config.get('speed_round_seconds', self.DEFAULT_SPEED_ROUND_SECONDS))
            if not result['success']:
                errors.append(result['user_message'])

        return errors

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        if not self._operations:
            validation_result["valid"] = False
            validation_result["issues"].append("No operations selected")

        if not self.MIN_QUESTION_COUNT <= self._question_count <= self.MAX_QUESTION_COUNT:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid question count: {self._question_count}")

        if not self.MIN_TIME_LIMIT <= self._time_limit <= self.MAX_TIME_LIMIT:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid time limit: {self._time_limit}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        operations = " ".join(op.symbol for op in self.get_operations())
        speed_round = (
            f"{self._speed_round_seconds} seconds per question"
            if self._speed_round_seconds is not None
            else "off"
        )
        return (
            f"Session Settings:\n"
            f"• Difficulty: {self._difficulty.value}\n"
            f"• Operations: {operations}\n"
            f"• Questions: {self._question_count}\n"
            f"• Time Limit: {self._time_limit} seconds\n"
            f"• Negative Numbers: {'on' if self._allow_negatives else 'off'}\n"
            f"• Decimal Numbers: {'on' if self._allow_decimals else 'off'}\n"
            f"• Speed Round: {speed_round}"
        )
