import pytest

from portbounce import BounceConfig, ConfigError, parse_port


@pytest.mark.parametrize("text, expected", [("1", 1), ("9000", 9000), ("65535", 65535)])
def test_parse_port_accepts_valid_ports(text, expected):
    assert parse_port(text) == expected


@pytest.mark.parametrize("text", ["0", "-1", "65536", "abc", "", "80.5"])
def test_parse_port_rejects_bogus_values(text):
    with pytest.raises(ConfigError):
        parse_port(text)


def test_config_defaults():
    config = BounceConfig(listen_port=9000, target_port=9001)
    assert config.listen_host == "0.0.0.0"
    assert config.target_host == "localhost"
    assert config.backlog == 10
    assert config.buffer_size == 4096
    assert config.idle_timeout is None


def test_zero_listen_port_needs_allow_ephemeral():
    with pytest.raises(ConfigError):
        BounceConfig(listen_port=0, target_port=9001)
    assert BounceConfig(listen_port=0, target_port=9001, allow_ephemeral=True).listen_port == 0


def test_zero_target_port_is_always_rejected():
    with pytest.raises(ConfigError):
        BounceConfig(listen_port=9000, target_port=0, allow_ephemeral=True)


@pytest.mark.parametrize("overrides", [
    {"listen_port": True},
    {"listen_port": "9000"},
    {"target_port": 70000},
    {"buffer_size": 0},
    {"backlog": 0},
    {"idle_timeout": 0},
    {"idle_timeout": -3.0},
])
def test_invalid_settings_raise_config_error(overrides):
    settings = {"listen_port": 9000, "target_port": 9001}
    settings.update(overrides)
    with pytest.raises(ConfigError):
        BounceConfig(**settings)


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_port("nope")
