import httpx
import pytest

from soil_song.client.transport import AppState, EventHub, HttpConnectivity, LifecycleEvents


def test_event_hub_delivers_and_unsubscribes():
    hub: EventHub[int] = EventHub()
    received: list[int] = []

    unsubscribe = hub.subscribe(received.append)
    hub.emit(1)
    unsubscribe()
    unsubscribe()
    hub.emit(2)

    assert received == [1]
    assert hub.listener_count == 0


def test_lifecycle_events_accept_string_states():
    events = LifecycleEvents()
    seen: list[AppState] = []
    events.subscribe(seen.append)

    events.emit(AppState("background"))

    assert seen == [AppState.BACKGROUND]


@pytest.mark.asyncio
async def test_http_connectivity_reports_changes_only():
    online = True

    def handler(request: httpx.Request) -> httpx.Response:
        if not online:
            raise httpx.ConnectError("offline", request=request)
        return httpx.Response(204)

    monitor = HttpConnectivity(
        "http://probe.test/",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    changes: list[bool] = []
    monitor.subscribe(changes.append)

    assert await monitor.is_connected() is True
    assert await monitor.is_connected() is True
    online = False
    assert await monitor.is_connected() is False

    assert changes == [True, False]
