from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from core.config import BotTarget, ConfigStore, FormatOptions, PluginConfig, TelegramConfig
from core.dispatcher import Dispatcher
from core.enricher import Enricher
from core.errors import ApplicationNotFoundError, ConfigurationError, DeliveryError, ErrorChannel
from core.models import ApplicationInfo, EnrichedMessage, Event

GLOBAL_OPTIONS = FormatOptions(include_app_name=True)
CUSTOM_OPTIONS = FormatOptions(include_extras=True)


class FakeResolver:
    def __init__(self, apps: dict[int, ApplicationInfo]) -> None:
        self._apps = apps

    async def resolve(self, app_id: int) -> ApplicationInfo:
        try:
            return self._apps[app_id]
        except KeyError:
            raise ApplicationNotFoundError(app_id) from None


class FakeNotifier:
    def __init__(self, block: bool = False) -> None:
        self.sent: list[tuple[EnrichedMessage, str, str, FormatOptions]] = []
        self.cancelled = 0
        self._block = block

    async def send(self, message: EnrichedMessage, token: str, chat_id: str, options: FormatOptions) -> None:
        if self._block:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        self.sent.append((message, token, chat_id, options))


def _config(default_chat_ids: tuple[str, ...] = ("999",)) -> PluginConfig:
    return PluginConfig(
        telegram=TelegramConfig(
            default_bot_token="default-token",
            default_chat_ids=default_chat_ids,
            bots=(
                BotTarget(
                    name="alerts",
                    token="alerts-token",
                    chat_ids=("100", "200"),
                    app_ids=frozenset({1}),
                    format_options=CUSTOM_OPTIONS,
                ),
                BotTarget(name="backups", token="backups-token", chat_ids=("300",), app_ids=frozenset({2})),
            ),
            format_options=GLOBAL_OPTIONS,
        )
    )


APPS = {
    1: ApplicationInfo(app_id=1, name="Alerts", description="alerting"),
    2: ApplicationInfo(app_id=2, name="Backups", description="backups"),
    3: ApplicationInfo(app_id=3, name="Misc", description="misc"),
}


def _event(app_id: int, event_id: int = 1) -> Event:
    return Event(
        id=event_id,
        app_id=app_id,
        title="Title",
        message="Body",
        priority=5,
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def _dispatcher(notifier: FakeNotifier, store: "ConfigStore | None" = None) -> tuple[Dispatcher, asyncio.Queue, ErrorChannel]:
    events: asyncio.Queue = asyncio.Queue(maxsize=100)
    errors = ErrorChannel()
    dispatcher = Dispatcher(events, errors, Enricher(FakeResolver(APPS)), notifier, store or ConfigStore(_config()))
    return dispatcher, events, errors


def test_routes_to_claiming_target_once_per_chat() -> None:
    notifier = FakeNotifier()

    async def scenario() -> None:
        dispatcher, _, _ = _dispatcher(notifier)
        tasks = await dispatcher.handle(_event(1))
        assert len(tasks) == 2
        await asyncio.gather(*tasks)

    asyncio.run(scenario())
    assert sorted(chat_id for _, _, chat_id, _ in notifier.sent) == ["100", "200"]
    assert {token for _, token, _, _ in notifier.sent} == {"alerts-token"}
    assert all(options is CUSTOM_OPTIONS for *_, options in notifier.sent)
    message = notifier.sent[0][0]
    assert message.app_name == "Alerts"
    assert message.app_description == "alerting"


def test_target_without_options_uses_global_options() -> None:
    notifier = FakeNotifier()

    async def scenario() -> None:
        dispatcher, _, _ = _dispatcher(notifier)
        await asyncio.gather(*await dispatcher.handle(_event(2)))

    asyncio.run(scenario())
    assert [(token, chat_id) for _, token, chat_id, _ in notifier.sent] == [("backups-token", "300")]
    assert notifier.sent[0][3] is GLOBAL_OPTIONS


def test_unclaimed_app_goes_to_default_target() -> None:
    notifier = FakeNotifier()

    async def scenario() -> None:
        dispatcher, _, _ = _dispatcher(notifier)
        await asyncio.gather(*await dispatcher.handle(_event(3)))

    asyncio.run(scenario())
    assert [(token, chat_id) for _, token, chat_id, _ in notifier.sent] == [("default-token", "999")]


def test_lookup_failure_drops_event_and_reports() -> None:
    notifier = FakeNotifier()

    async def scenario() -> list[BaseException]:
        dispatcher, _, errors = _dispatcher(notifier)
        assert await dispatcher.handle(_event(42)) == []
        return errors.drain()

    reported = asyncio.run(scenario())
    assert not notifier.sent
    assert len(reported) == 1
    assert isinstance(reported[0], ApplicationNotFoundError)


def test_target_without_chat_ids_reports_configuration_error() -> None:
    notifier = FakeNotifier()

    async def scenario() -> list[BaseException]:
        dispatcher, _, errors = _dispatcher(notifier, ConfigStore(_config(default_chat_ids=())))
        assert await dispatcher.handle(_event(3)) == []
        return errors.drain()

    reported = asyncio.run(scenario())
    assert not notifier.sent
    assert isinstance(reported[0], ConfigurationError)


def test_reconfiguration_applies_to_next_message() -> None:
    notifier = FakeNotifier()
    store = ConfigStore(_config())

    async def scenario() -> None:
        dispatcher, _, _ = _dispatcher(notifier, store)
        await asyncio.gather(*await dispatcher.handle(_event(3, event_id=1)))
        store.replace(_config(default_chat_ids=("555",)))
        await asyncio.gather(*await dispatcher.handle(_event(3, event_id=2)))

    asyncio.run(scenario())
    assert [chat_id for _, _, chat_id, _ in notifier.sent] == ["999", "555"]


def test_run_consumes_events_and_logs_errors(caplog) -> None:
    notifier = FakeNotifier()

    async def scenario() -> ErrorChannel:
        dispatcher, events, errors = _dispatcher(notifier)
        task = asyncio.create_task(dispatcher.run())
        await events.put(_event(1, event_id=1))
        await events.put(_event(2, event_id=2))
        errors.report(DeliveryError("telegram API error (status 400): bad request", status=400))
        for _ in range(100):
            if len(notifier.sent) == 3 and errors.qsize() == 0:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return errors

    with caplog.at_level(logging.ERROR, logger="core.dispatcher"):
        errors = asyncio.run(scenario())

    assert len(notifier.sent) == 3
    assert errors.qsize() == 0
    assert "status=400" in caplog.text


def test_run_does_not_wait_for_deliveries_and_cancels_them_on_shutdown() -> None:
    notifier = FakeNotifier(block=True)

    async def scenario() -> Dispatcher:
        dispatcher, events, _ = _dispatcher(notifier)
        task = asyncio.create_task(dispatcher.run())
        await events.put(_event(1, event_id=1))
        await events.put(_event(2, event_id=2))
        for _ in range(100):
            if dispatcher.pending_deliveries == 3:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.01)
        assert events.empty()
        assert dispatcher.pending_deliveries == 3
        task.cancel()
        await asyncio.wait_for(asyncio.gather(task, return_exceptions=True), timeout=1)
        return dispatcher

    dispatcher = asyncio.run(scenario())
    assert dispatcher.pending_deliveries == 0
    assert notifier.cancelled == 3
    assert not notifier.sent
