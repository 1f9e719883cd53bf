import asyncio
import unittest

from model_combiner.app_state import AppState
from model_combiner.dispatcher import (
    REASON_EMPTY_PROMPT,
    REASON_INVALID_CREDENTIAL,
    REASON_NO_MODELS,
    REASON_ROUND_IN_PROGRESS,
    DispatchRejected,
    FanOutDispatcher,
)
from model_combiner.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    STATUS_COMPLETE,
    STATUS_FAILED,
    STATUS_PENDING,
    CompletionParams,
)
from tests.fakes import FakeGateway, drain


class FanOutDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = FakeGateway()
        self.state = AppState(api_key="sk-test", api_key_valid=True)
        self.persist_calls = 0
        self.dispatcher = FanOutDispatcher(self.gateway, self.state, on_persist=self._persist)

    def _persist(self) -> None:
        self.persist_calls += 1

    def _statuses(self) -> list[tuple[str, str | None, str | None]]:
        return [(m.role, m.model_id, m.status) for m in self.state.conversation.messages]

    # -- placeholders --

    def test_placeholders_exist_before_any_request_settles(self) -> None:
        self.gateway.hold("modelA")
        self.gateway.hold("modelB")
        self.gateway.hold("modelC")

        async def scenario() -> None:
            task = asyncio.create_task(self.dispatcher.dispatch("hi", ["modelB", "modelA", "modelC"]))
            await drain()
            self.assertEqual(
                [
                    (ROLE_USER, None, None),
                    (ROLE_ASSISTANT, "modelB", STATUS_PENDING),
                    (ROLE_ASSISTANT, "modelA", STATUS_PENDING),
                    (ROLE_ASSISTANT, "modelC", STATUS_PENDING),
                ],
                self._statuses(),
            )
            for message in self.state.conversation.messages[1:]:
                self.assertEqual("", message.content)
            for model_id in ("modelA", "modelB", "modelC"):
                self.gateway.release(model_id)
            await task

        asyncio.run(scenario())

    def test_requests_are_issued_concurrently(self) -> None:
        self.gateway.hold("modelA")
        self.gateway.hold("modelB")

        async def scenario() -> None:
            task = asyncio.create_task(self.dispatcher.dispatch("hi", ["modelA", "modelB"]))
            await drain()
            # Both calls started although neither has been released.
            self.assertEqual(["modelA", "modelB"], [c[0] for c in self.gateway.calls])
            self.gateway.release("modelA")
            self.gateway.release("modelB")
            await task

        asyncio.run(scenario())

    # -- the 2+2 scenario --

    def test_mixed_success_and_failure_round(self) -> None:
        self.gateway.hold("modelA")
        self.gateway.hold("modelB")
        self.gateway.answer("modelA", "4")
        self.gateway.fail("modelB", "rate limited")

        async def scenario():
            task = asyncio.create_task(self.dispatcher.dispatch("2+2?", ["modelA", "modelB"]))
            await drain()
            self.assertEqual(3, len(self.state.conversation.messages))

            self.gateway.release("modelA")
            await drain()
            a, b = self.state.conversation.messages[1:]
            self.assertEqual(STATUS_COMPLETE, a.status)
            self.assertEqual("4", a.content)
            self.assertEqual(STATUS_PENDING, b.status)

            self.gateway.release("modelB")
            return await task

        round_ = asyncio.run(scenario())

        user, a, b = self.state.conversation.messages
        self.assertEqual("2+2?", user.content)
        self.assertEqual(("modelA", STATUS_COMPLETE, "4"), (a.model_id, a.status, a.content))
        self.assertEqual(("modelB", STATUS_FAILED), (b.model_id, b.status))
        self.assertEqual("rate limited", b.error_detail)
        self.assertEqual("Error: rate limited", b.content)
        self.assertIsNone(b.usage)
        self.assertEqual([True, False], [o.success for o in round_.outcomes])

    # -- isolation --

    def test_failure_resolving_first_does_not_touch_sibling(self) -> None:
        self.gateway.hold("modelB")
        self.gateway.fail("modelA", "boom")
        self.gateway.answer("modelB", "fine")

        async def scenario() -> None:
            task = asyncio.create_task(self.dispatcher.dispatch("q", ["modelA", "modelB"]))
            await drain()
            a, b = self.state.conversation.messages[1:]
            self.assertEqual(STATUS_FAILED, a.status)
            self.assertEqual(STATUS_PENDING, b.status)
            self.gateway.release("modelB")
            await task

        asyncio.run(scenario())
        b = self.state.conversation.messages[2]
        self.assertEqual(STATUS_COMPLETE, b.status)
        self.assertEqual("fine", b.content)

    def test_gateway_exception_is_captured_per_message(self) -> None:
        self.gateway.explode("modelA", RuntimeError("socket closed"))
        self.gateway.answer("modelB", "still here")

        round_ = asyncio.run(self.dispatcher.dispatch("q", ["modelA", "modelB"]))

        a, b = self.state.conversation.messages[1:]
        self.assertEqual(STATUS_FAILED, a.status)
        self.assertEqual("socket closed", a.error_detail)
        self.assertEqual(STATUS_COMPLETE, b.status)
        self.assertEqual("still here", b.content)
        self.assertFalse(round_.outcomes[0].success)

    # -- history --

    def test_every_model_receives_the_same_history(self) -> None:
        asyncio.run(self.dispatcher.dispatch("hello", ["modelA", "modelB", "modelC"]))

        histories = [history for _, history, _ in self.gateway.calls]
        self.assertEqual(3, len(histories))
        self.assertEqual([{"role": "user", "content": "hello"}], histories[0])
        self.assertTrue(all(h == histories[0] for h in histories))

    def test_history_excludes_failed_and_pending_answers(self) -> None:
        self.gateway.answer("modelA", "first answer")
        self.gateway.fail("modelB", "rate limited")
        asyncio.run(self.dispatcher.dispatch("first", ["modelA", "modelB"]))

        asyncio.run(self.dispatcher.dispatch("second", ["modelA", "modelB"]))

        second_round_history = self.gateway.histories_for("modelB")[1]
        self.assertEqual(
            [
                {"role": "user", "content": "first"},
                {"role": "assistant", "content": "first answer"},
                {"role": "user", "content": "second"},
            ],
            second_round_history,
        )
        self.assertFalse(any("rate limited" in h["content"] for h in second_round_history))

    def test_history_excludes_empty_successful_answers(self) -> None:
        self.gateway.answer("modelA", "")
        asyncio.run(self.dispatcher.dispatch("first", ["modelA"]))
        asyncio.run(self.dispatcher.dispatch("second", ["modelA"]))

        self.assertEqual(
            [{"role": "user", "content": "first"}, {"role": "user", "content": "second"}],
            self.gateway.histories_for("modelA")[1],
        )

    def test_params_default_to_preferences(self) -> None:
        self.state.preferences.default_temperature = 0.2
        self.state.preferences.default_max_tokens = 64
        asyncio.run(self.dispatcher.dispatch("q", ["modelA"]))
        self.assertEqual(CompletionParams(temperature=0.2, max_tokens=64), self.gateway.calls[0][2])

    def test_selected_models_default_to_state(self) -> None:
        self.state.selected_models = ["modelX", "modelY"]
        asyncio.run(self.dispatcher.dispatch("q"))
        self.assertEqual(["modelX", "modelY"], [c[0] for c in self.gateway.calls])

    # -- preconditions --

    def _assert_rejected(self, reason: str, prompt: str, model_ids: list[str]) -> None:
        with self.assertRaises(DispatchRejected) as ctx:
            asyncio.run(self.dispatcher.dispatch(prompt, model_ids))
        self.assertEqual(reason, ctx.exception.reason)
        self.assertEqual([], self.state.conversation.messages)
        self.assertEqual([], self.gateway.calls)
        self.assertEqual(0, self.persist_calls)

    def test_rejects_blank_prompt(self) -> None:
        self._assert_rejected(REASON_EMPTY_PROMPT, "   ", ["modelA"])

    def test_rejects_empty_model_selection(self) -> None:
        self._assert_rejected(REASON_NO_MODELS, "hi", [])

    def test_rejects_unvalidated_credential(self) -> None:
        self.state.api_key_valid = False
        self._assert_rejected(REASON_INVALID_CREDENTIAL, "hi", ["modelA"])

    def test_rejects_second_round_while_one_is_running(self) -> None:
        self.gateway.hold("modelA")

        async def scenario() -> None:
            first = asyncio.create_task(self.dispatcher.dispatch("one", ["modelA"]))
            await drain()
            with self.assertRaises(DispatchRejected) as ctx:
                await self.dispatcher.dispatch("two", ["modelA"])
            self.assertEqual(REASON_ROUND_IN_PROGRESS, ctx.exception.reason)
            self.gateway.release("modelA")
            await first

        asyncio.run(scenario())
        self.assertEqual(2, len(self.state.conversation.messages))
        self.assertFalse(self.state.is_generating)

    def test_prompt_is_trimmed(self) -> None:
        asyncio.run(self.dispatcher.dispatch("  spaced out \n", ["modelA"]))
        self.assertEqual("spaced out", self.state.conversation.messages[0].content)

    # -- persistence --

    def test_persists_after_placeholders_and_after_settling(self) -> None:
        self.gateway.hold("modelA")

        async def scenario() -> None:
            task = asyncio.create_task(self.dispatcher.dispatch("q", ["modelA"]))
            await drain()
            self.assertEqual(1, self.persist_calls)
            self.gateway.release("modelA")
            await task

        asyncio.run(scenario())
        self.assertEqual(2, self.persist_calls)

    def test_persist_failure_becomes_notice_and_round_completes(self) -> None:
        def failing_persist() -> None:
            raise OSError("disk full")

        dispatcher = FanOutDispatcher(self.gateway, self.state, on_persist=failing_persist)
        asyncio.run(dispatcher.dispatch("q", ["modelA"]))

        self.assertEqual(STATUS_COMPLETE, self.state.conversation.messages[1].status)
        self.assertIsNotNone(self.state.notifier.last)
        self.assertIn("disk full", self.state.notifier.last.message)

    def test_switching_conversation_mid_round_drops_late_results(self) -> None:
        self.gateway.hold("modelA")

        async def scenario() -> None:
            task = asyncio.create_task(self.dispatcher.dispatch("q", ["modelA"]))
            await drain()
            self.state.conversation.reset()
            self.gateway.release("modelA")
            await task

        asyncio.run(scenario())
        self.assertEqual([], self.state.conversation.messages)
        # Only the save taken before the switch happened.
        self.assertEqual(1, self.persist_calls)

    def test_reopening_the_same_conversation_mid_round_still_saves(self) -> None:
        conversation = self.state.conversation

        def persist() -> None:
            self.persist_calls += 1
            conversation.mark_persisted("conv-1", title="q", created_at="2026-01-01T00:00:00+00:00")

        dispatcher = FanOutDispatcher(self.gateway, self.state, on_persist=persist)
        self.gateway.hold("modelA")

        async def scenario() -> None:
            task = asyncio.create_task(dispatcher.dispatch("q", ["modelA"]))
            await drain()
            snapshot = conversation.messages
            conversation.reset()
            conversation.replace_all(snapshot, conversation_id="conv-1", title="q")
            self.gateway.release("modelA")
            await task

        asyncio.run(scenario())
        self.assertEqual([(ROLE_USER, None, None), (ROLE_ASSISTANT, "modelA", STATUS_COMPLETE)], self._statuses())
        self.assertEqual(2, self.persist_calls)


if __name__ == "__main__":
    unittest.main()
