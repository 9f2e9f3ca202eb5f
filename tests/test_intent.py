"""Unit tests for intent extraction and listener matching."""

import pytest

from config import IntentDefaults
from errors import NoPortsConfigured
from intent import (
    ANNOTATION_FORWARD_RULE,
    ANNOTATION_HEALTH_CHECK,
    ANNOTATION_INTERNAL,
    extract_intent,
    get_annotation,
    parse_bool,
)
from listeners import (
    build_listener_options,
    listener_name,
    listener_needs_update,
    match_listener,
)
from models import DesiredState, ExposureRequest, Listener, PortSpec, Protocol


def make_request(annotations=None, ports=None):
    return ExposureRequest(
        namespace="default",
        name="web",
        ports=ports if ports is not None else (PortSpec(Protocol.TCP, 80, 30080),),
        annotations=annotations or {},
    )


class TestGetAnnotation:
    """Tests for annotation lookup with defaults."""

    def test_absent_returns_default(self):
        assert get_annotation({}, "key", "RR") == "RR"

    def test_present_returns_literal(self):
        assert get_annotation({"key": "WRR"}, "key", "RR") == "WRR"

    def test_empty_string_is_returned_verbatim(self):
        assert get_annotation({"key": ""}, "key", "RR") == ""


class TestParseBool:
    """Tests for boolean-ish annotation values."""

    @pytest.mark.parametrize("value", ["1", "t", "T", "true", "TRUE", "True"])
    def test_true_values(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["0", "f", "F", "false", "FALSE", "False"])
    def test_false_values(self, value):
        assert parse_bool(value) is False

    @pytest.mark.parametrize("value", ["", "yes", "enabled", None])
    def test_unparsable(self, value):
        assert parse_bool(value) is None


class TestExtractIntent:
    """Tests for extract_intent."""

    def test_defaults_when_no_annotations(self):
        desired = extract_intent(make_request(), IntentDefaults())

        assert desired.forward_rule == "RR"
        assert desired.health_check is False
        assert desired.internal is False
        assert desired.ports == (PortSpec(Protocol.TCP, 80, 30080),)

    def test_annotations_override_defaults(self):
        request = make_request(
            {
                ANNOTATION_FORWARD_RULE: "WLC",
                ANNOTATION_HEALTH_CHECK: "1",
                ANNOTATION_INTERNAL: "true",
            }
        )

        desired = extract_intent(request, IntentDefaults())

        assert desired.forward_rule == "WLC"
        assert desired.health_check is True
        assert desired.internal is True

    def test_configured_defaults_are_used(self):
        defaults = IntentDefaults(forward_rule="WRR", health_check=True)

        desired = extract_intent(make_request(), defaults)

        assert desired.forward_rule == "WRR"
        assert desired.health_check is True

    def test_unparsable_health_check_falls_back(self):
        request = make_request({ANNOTATION_HEALTH_CHECK: "sometimes"})

        desired = extract_intent(request, IntentDefaults(health_check=True))

        assert desired.health_check is True

    def test_empty_forward_rule_is_kept(self):
        desired = extract_intent(
            make_request({ANNOTATION_FORWARD_RULE: ""}), IntentDefaults()
        )
        assert desired.forward_rule == ""

    def test_no_ports_raises(self):
        with pytest.raises(NoPortsConfigured) as exc_info:
            extract_intent(make_request(ports=()), IntentDefaults())

        assert exc_info.value.key == "default/web"
        assert exc_info.value.retryable is False


class TestListenerMatcher:
    """Tests for listener matching and options."""

    @pytest.fixture
    def desired(self):
        return DesiredState(
            forward_rule="RR",
            health_check=False,
            ports=(PortSpec(Protocol.TCP, 80, 30080),),
        )

    def test_matches_protocol_and_port(self):
        listeners = [
            Listener(id="udp", protocol="UDP", port=80),
            Listener(id="tcp", protocol="tcp", port=80),
        ]
        match = match_listener(listeners, PortSpec(Protocol.TCP, 80, 30080))
        assert match.id == "tcp"

    def test_first_duplicate_wins(self):
        listeners = [
            Listener(id="first", protocol="TCP", port=80),
            Listener(id="second", protocol="TCP", port=80),
        ]
        assert match_listener(listeners, PortSpec(Protocol.TCP, 80, 1)).id == "first"

    def test_no_match(self):
        listeners = [Listener(id="tcp", protocol="TCP", port=443)]
        assert match_listener(listeners, PortSpec(Protocol.TCP, 80, 30080)) is None

    def test_listener_name(self):
        assert listener_name(PortSpec(Protocol.UDP, 53, 30053), 2) == "listener_30053_2"

    def test_build_options(self, desired):
        options = build_listener_options(
            "slb-1", PortSpec(Protocol.UDP, 53, 30053), 1, desired
        )
        assert options == {
            "slbId": "slb-1",
            "listenerName": "listener_30053_1",
            "protocol": "UDP",
            "port": 53,
            "forwardRule": "RR",
            "isHealthCheck": "0",
        }

    def test_needs_update_only_on_policy_change(self, desired):
        port = desired.ports[0]
        same = Listener(id="l", protocol="TCP", port=80, forward_rule="RR")
        other_rule = Listener(id="l", protocol="TCP", port=80, forward_rule="WRR")
        other_check = Listener(
            id="l", protocol="TCP", port=80, forward_rule="RR", health_check=True
        )

        assert listener_needs_update(same, port, desired) is False
        assert listener_needs_update(other_rule, port, desired) is True
        assert listener_needs_update(other_check, port, desired) is True
