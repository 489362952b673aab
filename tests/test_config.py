"""
Tests for configuration and wire messages.
"""

import json
import tempfile
from pathlib import Path

import pytest

from matterhub.config import (
    CHIP_TOOL_ENV,
    ChipToolConfig,
    Config,
    get_config,
    reset_config,
    set_config,
)
from matterhub.hub.messages import (
    CommandResponse,
    CommissionIntent,
    CommissioningStatus,
    DiscoveryLog,
    InvalidPayloadError,
    InvokeIntent,
    SubscribeIntent,
    UnknownIntentError,
    decode_intent,
    ping_message,
)


class TestConfig:
    """Tests for configuration."""

    def test_default_config(self):
        """Test default configuration."""
        reset_config()

        with tempfile.TemporaryDirectory() as tmpdir:
            config = Config(data_dir=Path(tmpdir))

            assert config.server.port == 8080
            assert config.chip_tool.path == "chip-tool"
            assert config.chip_tool.pairing_method == "onnetwork-long"
            assert config.chip_tool.discovery_timeout == 60
            assert config.session.queue_size == 256
            assert config.session.ping_interval == 54

    def test_save_load(self, monkeypatch):
        """Test saving and loading config."""
        monkeypatch.delenv(CHIP_TOOL_ENV, raising=False)

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir)

            config1 = Config(data_dir=path)
            config1.chip_tool.path = "/opt/chip/chip-tool"
            config1.chip_tool.commissioning_node_id = "99"
            config1.session.queue_size = 16
            config1.save()

            assert Config.exists(path)
            config2 = Config.load(path)

            assert config2.chip_tool.path == "/opt/chip/chip-tool"
            assert config2.chip_tool.commissioning_node_id == "99"
            assert config2.session.queue_size == 16

    def test_unknown_keys_ignored(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir)
            (path / "config.json").write_text(json.dumps({
                "chip_tool": {"path": "/x", "retired_option": True},
                "server": {"port": 9000},
            }))

            config = Config.load(path)

            assert config.chip_tool.path == "/x"
            assert config.server.port == 9000

    def test_bad_pairing_method_falls_back(self):
        config = ChipToolConfig.from_dict({"pairing_method": "carrier-pigeon"})
        assert config.pairing_method == "onnetwork-long"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv(CHIP_TOOL_ENV, "/env/chip-tool")

        with tempfile.TemporaryDirectory() as tmpdir:
            config = Config.load(Path(tmpdir))

        assert config.chip_tool.path == "/env/chip-tool"

    def test_global_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Config(data_dir=Path(tmpdir))
            set_config(config)

            assert get_config() is config
        reset_config()


class TestIntentDecoding:
    """Tests for inbound envelopes."""

    def test_numbers_become_strings(self):
        intent = decode_intent({
            "type": "commission_device",
            "payload": {"setupCode": 20202021, "discriminator": 3840, "nodeIdToAssign": 5.0},
        })

        assert isinstance(intent, CommissionIntent)
        assert intent.setup_code == "20202021"
        assert intent.discriminator == "3840"
        assert intent.node_id_to_assign == "5"

    def test_missing_payload(self):
        intent = decode_intent({"type": "device_command"})

        assert isinstance(intent, InvokeIntent)
        assert intent.node_id == ""
        assert intent.params == {}

    def test_null_params(self):
        intent = decode_intent({"type": "device_command", "payload": {"params": None}})
        assert intent.params == {}

    def test_extra_fields_ignored(self):
        intent = decode_intent({
            "type": "subscribe_attribute",
            "payload": {"nodeId": "7", "minInterval": 1, "maxInterval": 10, "color": "red"},
        })

        assert isinstance(intent, SubscribeIntent)
        assert (intent.min_interval, intent.max_interval) == ("1", "10")

    def test_unknown_type(self):
        with pytest.raises(UnknownIntentError) as exc:
            decode_intent({"type": "launch"})
        assert exc.value.message == "Unknown command type received: launch"

    @pytest.mark.parametrize("envelope", [
        [],
        {"payload": {}},
        {"type": 5},
        {"type": "device_command", "payload": [1, 2]},
        {"type": "device_command", "payload": {"params": "not a dict"}},
    ])
    def test_invalid(self, envelope):
        with pytest.raises(InvalidPayloadError):
            decode_intent(envelope)


class TestEvents:
    """Tests for outbound message shapes."""

    def test_log_event(self):
        assert DiscoveryLog("scanning").to_message() == {"type": "discovery_log", "payload": "scanning"}

    def test_command_response_omits_empty(self):
        message = CommandResponse(success=False, error="nope").to_message()
        assert message == {"type": "command_response", "payload": {"success": False, "error": "nope"}}

    def test_commissioning_status_correlation(self):
        payload = CommissioningStatus(success=True, node_id="5", correlation_discriminator="3840").payload()

        assert payload["originalDiscriminator"] == "3840"
        assert payload["discriminatorAssociatedWithRequest"] == "3840"

    def test_ping(self):
        message = ping_message()
        assert message["type"] == "ping"
        assert isinstance(message["data"], str)
