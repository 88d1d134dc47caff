"""Unit tests for configuration loading (flags > environment > YAML file)."""

from pathlib import Path

import pytest

from ipwatch_dns.cli import (
    DEFAULT_TTL,
    ConfigurationError,
    LogNotifier,
    SlackNotifier,
    WatchConfig,
    _parse_bool,
    _split_list,
    create_notifier,
    load_config,
)

# =============================================================================
# Helpers
# =============================================================================


def test_split_list_handles_commas_spaces_and_lists() -> None:
    assert _split_list("a.example.com, b.example.com:b  c.example.com") == [
        "a.example.com",
        "b.example.com:b",
        "c.example.com",
    ]
    assert _split_list(["a.example.com,b.example.com", "c.example.com"]) == [
        "a.example.com",
        "b.example.com",
        "c.example.com",
    ]
    assert _split_list(None) == []


def test_parse_bool() -> None:
    assert _parse_bool("yes") is True
    assert _parse_bool("0") is False
    assert _parse_bool(None) is False
    assert _parse_bool(None, default=True) is True


# =============================================================================
# Sources
# =============================================================================


def test_flags_only() -> None:
    config = load_config(
        ["watch", "-H", "example.com", "-C", "global-ip", "-D", "a.example.com:svc-a", "-D", "b.example.com"],
        environ={},
    )

    assert config == WatchConfig(
        hosted_zone="example.com",
        domains=("a.example.com:svc-a", "b.example.com"),
        check_id="global-ip",
    )
    assert config.ttl == DEFAULT_TTL
    assert config.dry_run is False


def test_environment_fallback() -> None:
    env = {
        "IPWATCH_HOSTED_ZONE": "example.com.",
        "IPWATCH_CHECK_ID": "global-ip",
        "IPWATCH_DOMAIN": "a.example.com:svc-a,b.example.com:svc-b",
        "IPWATCH_TTL": "120",
        "IPWATCH_DRY_RUN": "true",
        "IPWATCH_LOG_LEVEL": "debug",
    }

    config = load_config(["watch"], environ=env)

    assert config.hosted_zone == "example.com"
    assert config.check_id == "global-ip"
    assert config.domains == ("a.example.com:svc-a", "b.example.com:svc-b")
    assert config.ttl == 120
    assert config.dry_run is True
    assert config.log_level == "DEBUG"


def test_domain_flag_splits_on_commas_only() -> None:
    """A quoted flag value keeps its spaces; commas still separate specs."""
    config = load_config(
        ["watch", "-H", "example.com", "-D", "a.example.com:my tag", "-D", "b.example.com:b, c.example.com"],
        environ={},
    )

    assert config.domains == ("a.example.com:my tag", "b.example.com:b", "c.example.com")


def test_flags_take_precedence_over_environment() -> None:
    env = {
        "IPWATCH_HOSTED_ZONE": "env.example",
        "IPWATCH_DOMAIN": "a.env.example",
        "IPWATCH_CHECK_ID": "env-check",
    }

    config = load_config(
        ["watch", "--hosted-zone", "example.com", "--domain", "a.example.com", "--check-id", "flag-check"],
        environ=env,
    )

    assert config.hosted_zone == "example.com"
    assert config.domains == ("a.example.com",)
    assert config.check_id == "flag-check"


def test_yaml_file_is_lowest_precedence(tmp_path: Path) -> None:
    config_file = tmp_path / "ipwatch.yaml"
    config_file.write_text(
        "hosted_zone: file.example\n"
        "check_id: file-check\n"
        "domains:\n"
        "  - a.file.example:web\n"
        "  - b.file.example\n"
        "ttl: 30\n"
        "continue_on_error: true\n"
        "slack:\n"
        "  webhook_url: https://hooks.slack.com/services/x\n"
        "  channel: '#dns'\n",
        encoding="utf-8",
    )

    config = load_config(
        ["watch", "--config", str(config_file), "-H", "example.com"],
        environ={"IPWATCH_CHECK_ID": "env-check"},
    )

    assert config.hosted_zone == "example.com"
    assert config.check_id == "env-check"
    assert config.domains == ("a.file.example:web", "b.file.example")
    assert config.ttl == 30
    assert config.continue_on_error is True
    assert config.slack_webhook_url == "https://hooks.slack.com/services/x"
    assert config.slack_channel == "#dns"


def test_config_path_from_environment(tmp_path: Path) -> None:
    config_file = tmp_path / "ipwatch.yaml"
    config_file.write_text("hosted_zone: example.com\ndomains: a.example.com\n", encoding="utf-8")

    config = load_config(["watch"], environ={"IPWATCH_CONFIG": str(config_file)})

    assert config.domains == ("a.example.com",)


# =============================================================================
# Validation
# =============================================================================


def test_missing_hosted_zone() -> None:
    with pytest.raises(ConfigurationError, match="Hosted zone is required"):
        load_config(["watch", "-D", "a.example.com"], environ={})


def test_missing_domains() -> None:
    with pytest.raises(ConfigurationError, match="At least one domain"):
        load_config(["watch", "-H", "example.com"], environ={})


@pytest.mark.parametrize("ttl", ["abc", "0", "-5"])
def test_invalid_ttl(ttl: str) -> None:
    with pytest.raises(ConfigurationError):
        load_config(["watch", "-H", "example.com", "-D", "a.example.com"], environ={"IPWATCH_TTL": ttl})


def test_invalid_log_level() -> None:
    with pytest.raises(ConfigurationError, match="log level"):
        load_config(
            ["watch", "-H", "example.com", "-D", "a.example.com", "--log-level", "chatty"], environ={}
        )


def test_unreadable_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Failed to load config"):
        load_config(["watch", "--config", str(tmp_path / "missing.yaml")], environ={})


def test_config_file_must_be_mapping(tmp_path: Path) -> None:
    config_file = tmp_path / "list.yaml"
    config_file.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="must contain a mapping"):
        load_config(["watch", "--config", str(config_file)], environ={})


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit) as excinfo:
        load_config([], environ={})

    assert excinfo.value.code == 2


# =============================================================================
# Factories
# =============================================================================


def test_create_notifier_selects_slack_when_webhook_set() -> None:
    base = WatchConfig(hosted_zone="example.com", domains=("a.example.com",))

    assert isinstance(create_notifier(base), LogNotifier)
    slack = WatchConfig(
        hosted_zone="example.com",
        domains=("a.example.com",),
        slack_webhook_url="https://hooks.slack.com/services/x",
    )
    assert isinstance(create_notifier(slack), SlackNotifier)
