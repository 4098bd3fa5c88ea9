"""
Unit tests for the Discord front end: embeds, slash command handlers and
the session listener.
"""
from dataclasses import replace
import unittest
from unittest.mock import Mock, patch

import discord

from mindmath.bot import (
    DiscordSessionListener,
    QuizBot,
    build_question_embed,
    build_summary_embed,
    format_answer,
)
from mindmath.config_manager import ConfigManager
from mindmath.models import Difficulty, FinishReason, SessionPhase, SessionState, SessionSummary
from mindmath.quiz_controller import QuizController
from mindmath.session import Start, is_correct, parse_answer, reduce
from tests.test_fixtures import MockDiscordObjects, ScriptedQuestions, TestFixtures, async_test


def playing_state(**overrides) -> SessionState:
    config = TestFixtures.create_config(**overrides)
    return reduce(SessionState.initial(config), Start(), ScriptedQuestions())


class TestFormatting(unittest.TestCase):
    """Test cases for answer formatting and embeds."""

    def test_format_answer(self):
        self.assertEqual(format_answer(10.0), "10")
        self.assertEqual(format_answer(1.4142), "1.4142")
        self.assertEqual(format_answer(0.5), "0.5")
        self.assertEqual(format_answer(-3.25), "-3.25")
        self.assertEqual(format_answer(1234567.0), "1234567")
        self.assertEqual(format_answer(-0.00001), "0")

    def test_format_answer_reads_back(self):
        """Test that a shown answer typed back in is scored correct."""
        for value in (1234567.0, -98765.4321, 0.0001):
            with self.subTest(value=value):
                self.assertTrue(is_correct(value, parse_answer(format_answer(value))))

    def test_question_embed(self):
        embed = build_question_embed(playing_state())

        self.assertEqual(embed.title, "🧮 Question 1 of 3")
        self.assertEqual(embed.description, "**7 + 3**")
        self.assertEqual(embed.fields[0].value, "60 seconds")
        self.assertEqual(embed.fields[1].value, "0 / 0")
        self.assertEqual(embed.footer.text, "Reply with /answer <number>")

    def test_question_embed_speed_round_footer(self):
        embed = build_question_embed(playing_state(speed_round_seconds=5))
        self.assertEqual(embed.footer.text, "Reply with /answer <number> within 5 seconds")

    def test_summary_embed(self):
        """Test summary titles and fields per finish reason."""
        summary = SessionSummary(3, 5, 10, 60.0, "60.00%", FinishReason.TIME_UP)
        embed = build_summary_embed(summary)

        self.assertEqual(embed.title, "⏰ Time's Up!")
        self.assertEqual(embed.fields[0].value, "3 / 5")
        self.assertEqual(embed.fields[1].value, "60.00%")
        self.assertEqual(embed.fields[2].value, "Answered 5 of 10 questions")

        completed = build_summary_embed(SessionSummary(0, 0, 10, None, "N/A", FinishReason.COMPLETED))
        self.assertEqual(completed.title, "🎉 Game Over!")
        self.assertEqual(completed.fields[1].value, "N/A")

        quit_embed = build_summary_embed(SessionSummary(1, 1, 10, 100.0, "100.00%", FinishReason.QUIT))
        self.assertEqual(quit_embed.title, "🏳️ Quiz Ended")


class TestDiscordSessionListener(unittest.TestCase):
    """Test cases for rendering session updates into a channel."""

    def setUp(self):
        self.channel = MockDiscordObjects.create_mock_channel()
        self.bot = Mock()
        self.bot.get_channel.return_value = self.channel
        self.listener = DiscordSessionListener(self.bot)

    @async_test
    async def test_question_posted(self):
        state = playing_state()
        await self.listener.on_question(12345, state)

        self.bot.get_channel.assert_called_once_with(12345)
        embed = self.channel.send.await_args.kwargs['embed']
        self.assertEqual(embed.description, "**7 + 3**")

    @async_test
    async def test_tick_updates_throttled(self):
        """Test that the question message is only edited on round numbers and the last seconds."""
        state = playing_state()
        await self.listener.on_question(12345, state)
        message = self.channel.send.return_value

        for remaining in (59, 55, 50, 12, 5, 1):
            await self.listener.on_tick(12345, replace(state, time_remaining=remaining))

        edited = [c.kwargs['embed'].fields[0].value for c in message.edit.await_args_list]
        self.assertEqual(edited, ["50 seconds", "5 seconds", "1 seconds"])

    @async_test
    async def test_tick_edit_failure_logged(self):
        state = playing_state()
        await self.listener.on_question(12345, state)
        message = self.channel.send.return_value
        message.edit.side_effect = discord.HTTPException(Mock(status=429, reason="Too Many Requests"), "slow down")

        with self.assertLogs('mindmath.bot', level='WARNING'):
            await self.listener.on_tick(12345, state)

    @async_test
    async def test_timed_out_answer_announced(self):
        state = playing_state()
        await self.listener.on_answer(12345, state.current_question, False, state, True)
        self.channel.send.assert_awaited_once_with("⏰ Too slow! `7 + 3` = **10**")

    @async_test
    async def test_manual_answer_not_announced(self):
        state = playing_state()
        await self.listener.on_answer(12345, state.current_question, True, state, False)
        self.channel.send.assert_not_awaited()

    @async_test
    async def test_finished_posts_summary(self):
        summary = SessionSummary(2, 3, 3, 66.67, "66.67%", FinishReason.COMPLETED)
        await self.listener.on_finished(12345, summary)

        embed = self.channel.send.await_args.kwargs['embed']
        self.assertEqual(embed.title, "🎉 Game Over!")

    @async_test
    async def test_uncached_channel(self):
        self.bot.get_channel.return_value = None
        with self.assertLogs('mindmath.bot', level='WARNING'):
            await self.listener.on_question(12345, playing_state())


class TestQuizBotCommands(unittest.TestCase):
    """Test cases for slash command handlers with mocked interactions."""

    async def make_bot(self, config=None):
        bot = QuizBot(config)
        bot.config_manager = ConfigManager()
        bot.config_manager.set_question_count(3)
        bot.quiz_controller = QuizController(
            bot.config_manager,
            question_factory=ScriptedQuestions(TestFixtures.create_sample_questions())
        )
        return bot

    async def tear_down(self, bot):
        await bot.quiz_controller.aclose()

    @async_test
    async def test_setup_hook_registers_commands(self):
        """Test that setup registers every slash command and applies the quiz config."""
        bot = QuizBot({'bot': {'command_prefix': '?'}, 'quiz': {'default_question_count': 5}})
        await bot.setup_hook()

        names = {command.name for command in bot.tree.get_commands()}
        self.assertEqual(names, {
            'help', 'difficulty', 'operations', 'set_questions', 'set_timer', 'negatives',
            'decimals', 'speed_round', 'settings', 'start', 'answer', 'quit', 'reset', 'status',
        })
        self.assertEqual(bot.command_prefix, '?')
        self.assertEqual(bot.config_manager.get_question_count(), 5)
        self.assertIsInstance(bot.quiz_controller.listener, DiscordSessionListener)

    @async_test
    async def test_difficulty_command(self):
        bot = await self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_difficulty(interaction, "olympiad")

        self.assertEqual(bot.config_manager.get_difficulty(), Difficulty.OLYMPIAD)
        embed = interaction.response.send_message.await_args.kwargs['embed']
        self.assertEqual(embed.title, "✅ Difficulty Updated")

    @async_test
    async def test_invalid_difficulty_is_ephemeral(self):
        bot = await self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_difficulty(interaction, "impossible")

        args, kwargs = interaction.response.send_message.await_args
        self.assertIn("Unknown difficulty", args[0])
        self.assertTrue(kwargs['ephemeral'])
        self.assertEqual(bot.config_manager.get_difficulty(), Difficulty.MEDIUM)

    @async_test
    async def test_operations_command(self):
        bot = await self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_operations(interaction, "+ sqrt, C")

        embed = interaction.response.send_message.await_args.kwargs['embed']
        self.assertEqual(embed.description, "✅ Operations: + √ C")

    @async_test
    async def test_toggle_commands(self):
        bot = await self.make_bot()

        await bot.handle_negatives(MockDiscordObjects.create_mock_interaction())
        await bot.handle_decimals(MockDiscordObjects.create_mock_interaction())
        self.assertTrue(bot.config_manager.get_allow_negatives())
        self.assertTrue(bot.config_manager.get_allow_decimals())

        await bot.handle_negatives(MockDiscordObjects.create_mock_interaction())
        self.assertFalse(bot.config_manager.get_allow_negatives())

    @async_test
    async def test_speed_round_command(self):
        """Test that /speed_round toggles with the default delay unless seconds are given."""
        bot = await self.make_bot()

        await bot.handle_speed_round(MockDiscordObjects.create_mock_interaction())
        self.assertEqual(bot.config_manager.get_speed_round(), ConfigManager.DEFAULT_SPEED_ROUND_SECONDS)

        await bot.handle_speed_round(MockDiscordObjects.create_mock_interaction())
        self.assertIsNone(bot.config_manager.get_speed_round())

        await bot.handle_speed_round(MockDiscordObjects.create_mock_interaction(), 8)
        self.assertEqual(bot.config_manager.get_speed_round(), 8)

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_speed_round(interaction, 0)
        self.assertTrue(interaction.response.send_message.await_args.kwargs['ephemeral'])
        self.assertEqual(bot.config_manager.get_speed_round(), 8)

    @async_test
    async def test_set_questions_and_timer(self):
        bot = await self.make_bot()

        await bot.handle_set_questions(MockDiscordObjects.create_mock_interaction(), 20)
        await bot.handle_set_timer(MockDiscordObjects.create_mock_interaction(), 120)
        self.assertEqual(bot.config_manager.get_question_count(), 20)
        self.assertEqual(bot.config_manager.get_time_limit(), 120)

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_set_timer(interaction, 601)
        self.assertIn("Maximum is 600", interaction.response.send_message.await_args.args[0])

    @async_test
    async def test_help_and_settings(self):
        bot = await self.make_bot()

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_help(interaction)
        embed = interaction.response.send_message.await_args.kwargs['embed']
        self.assertEqual(embed.title, "🧮 MindMath Commands")
        self.assertIn("Difficulty: medium", embed.fields[2].value)

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_settings(interaction)
        embed = interaction.response.send_message.await_args.kwargs['embed']
        self.assertIn("Questions: 3", embed.description)

    @async_test
    async def test_start_and_answer(self):
        """Test a short game through the command handlers."""
        bot = await self.make_bot()

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_start(interaction)
        interaction.response.defer.assert_awaited_once()
        embed = interaction.followup.send.await_args.kwargs['embed']
        self.assertEqual(embed.title, "🎯 Quiz Started!")

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_answer(interaction, "10")
        interaction.response.defer.assert_awaited_once()
        interaction.followup.send.assert_awaited_once_with("✅ Correct! `7 + 3` = **10**\nScore: 1 / 1")

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_answer(interaction, "4")
        interaction.followup.send.assert_awaited_once_with(
            "❌ Not quite. `20 ÷ 4` = **5** (you answered `4`)\nScore: 1 / 2"
        )

        await self.tear_down(bot)

    @async_test
    async def test_start_twice(self):
        bot = await self.make_bot()
        await bot.handle_start(MockDiscordObjects.create_mock_interaction())

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_start(interaction)

        args, kwargs = interaction.followup.send.await_args
        self.assertIn("already running", args[0])
        self.assertTrue(kwargs['ephemeral'])

        await self.tear_down(bot)

    @async_test
    async def test_answer_without_quiz(self):
        bot = await self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_answer(interaction, "10")

        args, kwargs = interaction.followup.send.await_args
        self.assertEqual(args[0], "❌ No quiz found in this channel. Start one with `/start`.")
        self.assertTrue(kwargs['ephemeral'])

    @async_test
    async def test_quit_reset_status(self):
        bot = await self.make_bot()
        channel_id = 12345
        await bot.handle_start(MockDiscordObjects.create_mock_interaction(channel_id))

        interaction = MockDiscordObjects.create_mock_interaction(channel_id)
        await bot.handle_quit(interaction)
        embed = interaction.followup.send.await_args.kwargs['embed']
        self.assertEqual(embed.title, "🏳️ Quiz Quit")

        interaction = MockDiscordObjects.create_mock_interaction(channel_id)
        await bot.handle_status(interaction)
        embed = interaction.response.send_message.await_args.kwargs['embed']
        self.assertTrue(embed.description.startswith("Quiz finished (quit)"))

        interaction = MockDiscordObjects.create_mock_interaction(channel_id)
        await bot.handle_reset(interaction)
        embed = interaction.response.send_message.await_args.kwargs['embed']
        self.assertEqual(embed.title, "🔄 Back to Setup")
        self.assertEqual(bot.quiz_controller.get_session(channel_id).phase, SessionPhase.SETUP)

        await self.tear_down(bot)

    @async_test
    async def test_answer_acknowledged_before_channel_posts(self):
        """Test that /answer and /quit are deferred before the next question or summary is posted."""
        bot = await self.make_bot()
        bot.quiz_controller.listener = DiscordSessionListener(bot)
        channel = MockDiscordObjects.create_mock_channel()
        order = []
        message = channel.send.return_value
        channel.send.side_effect = lambda *args, **kwargs: order.append('channel.send') or message

        with patch.object(bot, 'get_channel', return_value=channel):
            await bot.handle_start(MockDiscordObjects.create_mock_interaction())
            order.clear()

            for handler, args in ((bot.handle_answer, ("10",)), (bot.handle_quit, ())):
                interaction = MockDiscordObjects.create_mock_interaction()

                def defer(*a, **k):
                    order.append('defer')
                    interaction.response.is_done.return_value = True

                interaction.response.defer.side_effect = defer
                interaction.followup.send.side_effect = lambda *a, **k: order.append('followup.send')
                await handler(interaction, *args)

        self.assertEqual(order, [
            'defer', 'channel.send', 'followup.send',
            'defer', 'channel.send', 'followup.send',
        ])
        interaction.response.send_message.assert_not_awaited()

        await self.tear_down(bot)

    @async_test
    async def test_http_error_sends_error_response(self):
        """Test that a failed Discord send falls back to an error embed."""
        bot = await self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()
        interaction.response.send_message.side_effect = [
            discord.HTTPException(Mock(status=500, reason="Server Error"), "boom"),
            None,
        ]

        await bot.handle_settings(interaction)

        embed = interaction.response.send_message.await_args.kwargs['embed']
        self.assertEqual(embed.title, "❌ Settings Error")
        self.assertEqual(interaction.response.send_message.await_count, 2)


if __name__ == '__main__':
    unittest.main()
