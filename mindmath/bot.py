import discord
from discord.ext import commands
import logging
from typing import Any, Dict, Optional
import os
from pathlib import Path

from .config_manager import ConfigManager
from .models import FinishReason, Question, SessionState, SessionSummary
from .quiz_controller import QuizController, SessionListener

logger = logging.getLogger(__name__)

COLOR_SUCCESS = 0x00ff00
COLOR_ERROR = 0xff0000
COLOR_INFO = 0x6699ff
COLOR_WARNING = 0xffaa00


def setup_logging(log_config: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Set up console, file and error-file logging from the ``logging`` config section."""
    log_config = log_config or {}
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    logs_dir = Path(log_config.get('log_directory', './logs/'))
    logs_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),  # Console output
            logging.FileHandler(logs_dir / "bot.log", encoding='utf-8'),  # File output
        ]
    )

    # Set up error-specific logging
    error_handler = logging.FileHandler(logs_dir / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logging.getLogger().addHandler(error_handler)

    # Reduce discord.py noise
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)

    return logging.getLogger(__name__)


def format_answer(value: float) -> str:
    """Render an expected answer with up to four decimals."""
    # No grouping commas: the shown value must read back through parse_answer
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def build_question_embed(state: SessionState) -> discord.Embed:
    config = state.config
    embed = discord.Embed(
        title=f"🧮 Question {state.answered + 1} of {config.question_count}",
        description=f"**{state.current_question.prompt}**",
        color=COLOR_SUCCESS
    )
    embed.add_field(name="⏱️ Time Remaining", value=f"{state.time_remaining} seconds", inline=True)
    embed.add_field(name="🏆 Score", value=f"{state.score} / {state.answered}", inline=True)

    footer = "Reply with /answer <number>"
    if config.speed_round:
        footer += f" within {config.speed_round_seconds} seconds"
    embed.set_footer(text=footer)
    return embed


def build_summary_embed(summary: SessionSummary) -> discord.Embed:
    titles = {
        FinishReason.COMPLETED: "🎉 Game Over!",
        FinishReason.TIME_UP: "⏰ Time's Up!",
        FinishReason.QUIT: "🏳️ Quiz Ended",
    }
    embed = discord.Embed(
        title=titles.get(summary.finish_reason, "🎉 Game Over!"),
        color=COLOR_SUCCESS
    )
    embed.add_field(name="🏆 Your Score", value=f"{summary.score} / {summary.answered}", inline=True)
    embed.add_field(name="🎯 Accuracy", value=summary.accuracy_text, inline=True)
    embed.add_field(
        name="📊 Progress",
        value=f"Answered {summary.answered} of {summary.question_count} questions",
        inline=False
    )
    embed.set_footer(text="Use /start to play again or /reset to change settings")
    return embed


class DiscordSessionListener(SessionListener):
    """Renders session updates into the session's Discord channel."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self._question_messages: Dict[int, discord.Message] = {}

    def _channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            logger.warning(f"Channel {channel_id} is not cached, cannot send session update")
        return channel

    async def on_question(self, channel_id: int, state: SessionState) -> None:
        channel = self._channel(channel_id)
        if channel is None:
            return
        message = await channel.send(embed=build_question_embed(state))
        self._question_messages[channel_id] = message

    async def on_tick(self, channel_id: int, state: SessionState) -> None:
        # Editing every second would hit rate limits
        remaining = state.time_remaining
        if remaining % 10 != 0 and remaining > 5:
            return
        message = self._question_messages.get(channel_id)
        if message is None or state.current_question is None:
            return
        try:
            await message.edit(embed=build_question_embed(state))
        except discord.HTTPException as e:
            logger.warning(f"Failed to update timer for channel {channel_id}: {e}")

    async def on_answer(self, channel_id: int, question: Question, correct: bool,
                        state: SessionState, timed_out: bool) -> None:
        # Manual answers are acknowledged by the /answer response
        if not timed_out:
            return
        channel = self._channel(channel_id)
        if channel is None:
            return
        await channel.send(
            f"⏰ Too slow! `{question.prompt}` = **{format_answer(question.answer)}**"
        )

    async def on_finished(self, channel_id: int, summary: SessionSummary) -> None:
        self._question_messages.pop(channel_id, None)
        channel = self._channel(channel_id)
        if channel is None:
            return
        await channel.send(embed=build_summary_embed(summary))


class QuizBot(commands.Bot):
    """Discord bot for MindMath practice sessions"""

    def __init__(self, config=None):
        # Minimal intents for slash commands
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,  # Fallback prefix, mainly using slash commands
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.quiz_controller: Optional[QuizController] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            if self.app_config:
                self.apply_configuration()

            self.quiz_controller = QuizController(
                self.config_manager,
                listener=DiscordSessionListener(self)
            )

            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def apply_configuration(self):
        """Apply the ``quiz`` section of the configuration file."""
        errors = self.config_manager.apply_config(self.app_config.get('quiz', {}))
        for error in errors:
            logger.warning(f"Ignoring invalid quiz setting: {error}")
        logger.info("Configuration applied")

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="Display available commands")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="difficulty", description="Set difficulty: easy, medium, hard or olympiad")
        async def difficulty_command(interaction: discord.Interaction, level: str):
            await self.handle_difficulty(interaction, level)

        @self.tree.command(name="operations", description="Set operations, e.g. \"+ - × ÷ sqrt P C\"")
        async def operations_command(interaction: discord.Interaction, operations: str):
            await self.handle_operations(interaction, operations)

        @self.tree.command(name="set_questions", description="Set the number of questions (1-100)")
        async def set_questions_command(interaction: discord.Interaction, number: int):
            await self.handle_set_questions(interaction, number)

        @self.tree.command(name="set_timer", description="Set the session time limit (1-600 seconds)")
        async def set_timer_command(interaction: discord.Interaction, seconds: int):
            await self.handle_set_timer(interaction, seconds)

        @self.tree.command(name="negatives", description="Toggle negative numbers")
        async def negatives_command(interaction: discord.Interaction):
            await self.handle_negatives(interaction)

        @self.tree.command(name="decimals", description="Toggle decimal numbers")
        async def decimals_command(interaction: discord.Interaction):
            await self.handle_decimals(interaction)

        @self.tree.command(name="speed_round", description="Toggle speed round, optionally with seconds per question")
        async def speed_round_command(interaction: discord.Interaction, seconds: Optional[int] = None):
            await self.handle_speed_round(interaction, seconds)

        @self.tree.command(name="settings", description="Show the settings for the next quiz")
        async def settings_command(interaction: discord.Interaction):
            await self.handle_settings(interaction)

        @self.tree.command(name="start", description="Start a quiz with current settings")
        async def start_command(interaction: discord.Interaction):
            await self.handle_start(interaction)

        @self.tree.command(name="answer", description="Answer the current question")
        async def answer_command(interaction: discord.Interaction, value: str):
            await self.handle_answer(interaction, value)

        @self.tree.command(name="quit", description="Quit the running quiz")
        async def quit_command(interaction: discord.Interaction):
            await self.handle_quit(interaction)

        @self.tree.command(name="reset", description="Return a finished quiz to setup")
        async def reset_command(interaction: discord.Interaction):
            await self.handle_reset(interaction)

        @self.tree.command(name="status", description="Show quiz progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            stopped = await self.quiz_controller.aclose()
            logger.info(f"Stopped {stopped} sessions on shutdown")
        await super().close()

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            help_embed = discord.Embed(
                title="🧮 MindMath Commands",
                description="Practice mental arithmetic against the clock",
                color=COLOR_SUCCESS
            )
            help_embed.add_field(
                name="📋 Setup",
                value=(
                    "`/difficulty <level>` - easy, medium, hard or olympiad\n"
                    "`/operations <list>` - e.g. `+ - × ÷ ^ √ log sin cos tan P C`\n"
                    "`/set_questions <number>` - Questions per quiz (1-100)\n"
                    "`/set_timer <seconds>` - Time limit for the whole quiz (1-600)\n"
                    "`/negatives` - Toggle negative numbers\n"
                    "`/decimals` - Toggle decimal numbers\n"
                    "`/speed_round [seconds]` - Auto-submit each question after a delay\n"
                    "`/settings` - Show current settings"
                ),
                inline=False
            )
            help_embed.add_field(
                name="🎮 Playing",
                value=(
                    "`/start` - Start a quiz\n"
                    "`/answer <number>` - Answer the current question (within 0.01)\n"
                    "`/quit` - End the quiz early\n"
                    "`/reset` - Return a finished quiz to setup\n"
                    "`/status` - Show progress"
                ),
                inline=False
            )
            help_embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )
            await interaction.response.send_message(embed=help_embed)

        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Failed to display help", "❌ Help Error")

    async def _send_config_result(self, interaction: discord.Interaction, result: Dict[str, Any], title: str):
        if result['success']:
            embed = discord.Embed(title=title, description=result['user_message'], color=COLOR_SUCCESS)
            await interaction.response.send_message(embed=embed)
        else:
            await interaction.response.send_message(result['user_message'], ephemeral=True)

    async def handle_difficulty(self, interaction: discord.Interaction, level: str):
        """Handle /difficulty command"""
        try:
            result = self.config_manager.set_difficulty(level)
            await self._send_config_result(interaction, result, "✅ Difficulty Updated")
        except discord.HTTPException as e:
            logger.error(f"Error in difficulty command: {e}")
            await self.send_error_response(interaction, "Failed to set difficulty", "❌ Configuration Error")

    async def handle_operations(self, interaction: discord.Interaction, operations: str):
        """Handle /operations command"""
        try:
            result = self.config_manager.set_operations(operations)
            await self._send_config_result(interaction, result, "✅ Operations Updated")
        except discord.HTTPException as e:
            logger.error(f"Error in operations command: {e}")
            await self.send_error_response(interaction, "Failed to set operations", "❌ Configuration Error")

    async def handle_set_questions(self, interaction: discord.Interaction, number: int):
        """Handle /set_questions command"""
        try:
            result = self.config_manager.set_question_count(number)
            await self._send_config_result(interaction, result, "✅ Question Count Updated")
        except discord.HTTPException as e:
            logger.error(f"Error in set_questions command: {e}")
            await self.send_error_response(interaction, "Failed to set question count", "❌ Configuration Error")

    async def handle_set_timer(self, interaction: discord.Interaction, seconds: int):
        """Handle /set_timer command"""
        try:
            result = self.config_manager.set_time_limit(seconds)
            await self._send_config_result(interaction, result, "✅ Time Limit Updated")
        except discord.HTTPException as e:
            logger.error(f"Error in set_timer command: {e}")
            await self.send_error_response(interaction, "Failed to set time limit", "❌ Configuration Error")

    async def handle_negatives(self, interaction: discord.Interaction):
        """Handle /negatives command"""
        try:
            result = self.config_manager.set_allow_negatives(not self.config_manager.get_allow_negatives())
            await self._send_config_result(interaction, result, "✅ Negative Numbers Updated")
        except discord.HTTPException as e:
            logger.error(f"Error in negatives command: {e}")
            await self.send_error_response(interaction, "Failed to toggle negative numbers", "❌ Configuration Error")

    async def handle_decimals(self, interaction: discord.Interaction):
        """Handle /decimals command"""
        try:
            result = self.config_manager.set_allow_decimals(not self.config_manager.get_allow_decimals())
            await self._send_config_result(interaction, result, "✅ Decimal Numbers Updated")
        except discord.HTTPException as e:
            logger.error(f"Error in decimals command: {e}")
            await self.send_error_response(interaction, "Failed to toggle decimal numbers", "❌ Configuration Error")

    async def handle_speed_round(self, interaction: discord.Interaction, seconds: Optional[int] = None):
        """Handle /speed_round command: toggles unless a delay is given"""
        try:
            if seconds is None and self.config_manager.get_speed_round() is not None:
                result = self.config_manager.set_speed_round(None)
            else:
                result = self.config_manager.set_speed_round(
                    seconds if seconds is not None else ConfigManager.DEFAULT_SPEED_ROUND_SECONDS
                )
            await self._send_config_result(interaction, result, "✅ Speed Round Updated")
        except discord.HTTPException as e:
            logger.error(f"Error in speed_round command: {e}")
            await self.send_error_response(interaction, "Failed to update speed round", "❌ Configuration Error")

    async def handle_settings(self, interaction: discord.Interaction):
        """Handle /settings command"""
        try:
            embed = discord.Embed(
                title="⚙️ Quiz Settings",
                description=f"```\n{self.config_manager.get_settings_summary()}\n```",
                color=COLOR_INFO
            )
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in settings command: {e}")
            await self.send_error_response(interaction, "Failed to show settings", "❌ Settings Error")

    async def handle_start(self, interaction: discord.Interaction):
        """Handle /start command"""
        try:
            channel_id = interaction.channel_id
            # Acknowledge first; the controller posts the first question to the channel
            await interaction.response.defer()

            result = await self.quiz_controller.start_quiz(channel_id)

            if not result['success']:
                await interaction.followup.send(result['user_message'], ephemeral=True)
                return

            settings = result['session_info']['settings']
            embed = discord.Embed(
                title="🎯 Quiz Started!",
                description=(
                    f"Difficulty: **{settings['difficulty']}**\n"
                    f"Operations: {' '.join(settings['operations'])}\n"
                    f"Questions: {settings['question_count']} | Time: {settings['time_limit']} seconds"
                ),
                color=COLOR_SUCCESS
            )
            embed.add_field(
                name="🎮 Controls",
                value="Use `/answer <number>` to answer or `/quit` to end the quiz",
                inline=False
            )
            await interaction.followup.send(embed=embed)

        except discord.HTTPException as e:
            logger.error(f"Error in start command: {e}")
            await self.send_error_response(interaction, "Failed to start quiz", "❌ Quiz Start Error")

    async def handle_answer(self, interaction: discord.Interaction, value: str):
        """Handle /answer command"""
        try:
            # Acknowledge first; the controller may post the next question or the summary
            await interaction.response.defer()

            result = await self.quiz_controller.submit_answer(interaction.channel_id, value)

            if not result['success']:
                await interaction.followup.send(result['user_message'], ephemeral=True)
                return

            if result['correct']:
                message = f"✅ Correct! `{result['question']}` = **{format_answer(result['expected_answer'])}**"
            else:
                message = (
                    f"❌ Not quite. `{result['question']}` = **{format_answer(result['expected_answer'])}** "
                    f"(you answered `{value}`)"
                )
            message += f"\nScore: {result['score']} / {result['answered']}"
            await interaction.followup.send(message)

        except discord.HTTPException as e:
            logger.error(f"Error in answer command: {e}")
            await self.send_error_response(interaction, "Failed to submit answer", "❌ Answer Error")

    async def handle_quit(self, interaction: discord.Interaction):
        """Handle /quit command"""
        try:
            await interaction.response.defer()

            result = await self.quiz_controller.quit_quiz(interaction.channel_id)
            if result['success']:
                await self.send_info_response(interaction, "Quiz ended. Final results are posted above.", "🏳️ Quiz Quit")
            else:
                await interaction.followup.send(result['user_message'], ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in quit command: {e}")
            await self.send_error_response(interaction, "Failed to quit quiz", "❌ Quit Error")

    async def handle_reset(self, interaction: discord.Interaction):
        """Handle /reset command"""
        try:
            result = await self.quiz_controller.reset_quiz(interaction.channel_id)
            if result['success']:
                await self.send_info_response(
                    interaction,
                    "Score cleared. Adjust settings and use `/start` when ready.",
                    "🔄 Back to Setup"
                )
            else:
                await interaction.response.send_message(result['user_message'], ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in reset command: {e}")
            await self.send_error_response(interaction, "Failed to reset quiz", "❌ Reset Error")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        try:
            embed = discord.Embed(
                title="📊 Quiz Status",
                description=self.quiz_controller.get_session_status_summary(interaction.channel_id),
                color=COLOR_INFO
            )
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in status command: {e}")
            await self.send_error_response(interaction, "Failed to get quiz status", "❌ Status Error")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=COLOR_ERROR
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=COLOR_INFO
            )

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send info response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting MindMath bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
