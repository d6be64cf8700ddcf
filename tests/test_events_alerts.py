import logging

import pytest
import requests

from marketing_data.etl import AlertService, Event, EventBus, UnknownEventError


# --- Event bus ---

def test_publish_calls_subscribers_in_order():
    bus = EventBus()
    seen = []
    bus.subscribe(Event.LOAD_COMPLETED, lambda p: seen.append(("a", p)))
    bus.subscribe(Event.LOAD_COMPLETED, lambda p: seen.append(("b", p)))
    bus.publish(Event.LOAD_COMPLETED, 1)
    assert seen == [("a", 1), ("b", 1)]

def test_failing_subscriber_is_isolated_and_counted(caplog):
    bus = EventBus()
    seen = []

    def broken(_):
        raise RuntimeError("subscriber bug")

    bus.subscribe(Event.LOAD_COMPLETED, broken)
    bus.subscribe(Event.LOAD_COMPLETED, seen.append)
    with caplog.at_level(logging.ERROR):
        bus.publish(Event.LOAD_COMPLETED, "x")
    assert seen == ["x"]
    stats = bus.stats()["LoadCompleted"]
    assert stats["published"] == 1
    assert stats["errors"] == 1
    assert "subscriber bug" in caplog.text

def test_string_topics_are_rejected():
    bus = EventBus()
    with pytest.raises(UnknownEventError):
        bus.publish("LoadCompleted")
    with pytest.raises(UnknownEventError):
        bus.subscribe("CargaFinalizada", print)

def test_other_events_do_not_reach_load_subscribers():
    bus = EventBus()
    seen = []
    bus.subscribe(Event.LOAD_COMPLETED, seen.append)
    bus.publish(Event.REPORT_GENERATED, 3)
    assert seen == []


# --- Alerts ---

class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.posts = []
        self.response = response or FakeResponse()
        self.exc = exc

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.exc:
            raise self.exc
        return self.response


def test_disabled_alerts_send_nothing(caplog):
    session = FakeSession()
    svc = AlertService(enabled=False, webhook_url="https://hooks.example.com/x", session=session)
    with caplog.at_level(logging.WARNING):
        svc.send_critical("ETL failed", "detail")
    assert session.posts == []
    assert "alerts disabled" in caplog.text

def test_critical_alert_posts_to_webhook():
    session = FakeSession()
    svc = AlertService(enabled=True, webhook_url="https://hooks.example.com/x", session=session)
    svc.send_critical("ETL failed", "3 attempts")
    assert len(session.posts) == 1
    url, body, _ = session.posts[0]
    assert url == "https://hooks.example.com/x"
    assert body["type"] == "CRITICAL"
    assert body["severity"] == "HIGH"
    assert body["message"] == "ETL failed"
    assert body["detail"] == "3 attempts"

def test_webhook_failure_is_logged_not_raised(caplog):
    session = FakeSession(exc=requests.ConnectionError("refused"))
    svc = AlertService(enabled=True, webhook_url="https://hooks.example.com/x", session=session)
    with caplog.at_level(logging.ERROR):
        svc.send_critical("ETL failed", "detail")
    assert "alert webhook failed" in caplog.text

def test_webhook_http_error_is_logged(caplog):
    session = FakeSession(response=FakeResponse(502))
    svc = AlertService(enabled=True, webhook_url="https://hooks.example.com/x", session=session)
    with caplog.at_level(logging.ERROR):
        svc.send_critical("ETL failed", "detail")
    assert "502" in caplog.text

def test_no_destination_warns(caplog):
    svc = AlertService(enabled=True, session=FakeSession())
    with caplog.at_level(logging.WARNING):
        svc.send_warning("3 records fell back")
    assert "no alert destination configured" in caplog.text
