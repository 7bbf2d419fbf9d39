from rchatd.config import HubRuntimeConfig, apply_config_data, load_toml


def test_tables_map_onto_fields() -> None:
    cfg = apply_config_data(
        HubRuntimeConfig(),
        {
            "hub": {"dest_name": "rchat.test", "rate_limit_msgs_per_minute": 60},
            "store": {"backend": "memory", "history_limit": 20},
            "logging": {"level": "DEBUG", "console": False},
        },
    )
    assert cfg.dest_name == "rchat.test"
    assert cfg.rate_limit_msgs_per_minute == 60
    assert cfg.store_backend == "memory"
    assert cfg.history_limit == 20
    assert cfg.log_level == "DEBUG"
    assert cfg.log_console is False


def test_empty_strings_clear_optional_paths() -> None:
    base = HubRuntimeConfig(database_path="/tmp/x.db", log_file="/tmp/x.log")
    cfg = apply_config_data(
        base, {"store": {"path": ""}, "logging": {"file": ""}, "hub": {"configdir": ""}}
    )
    assert cfg.database_path is None
    assert cfg.log_file is None
    assert cfg.configdir is None


def test_config_path_and_unknown_keys_are_ignored() -> None:
    base = HubRuntimeConfig(config_path="/etc/rchatd.toml")
    cfg = apply_config_data(base, {"config_path": "/elsewhere", "bogus": 1})
    assert cfg == base


def test_load_toml(tmp_path) -> None:
    path = tmp_path / "rchatd.toml"
    path.write_text('[hub]\nhub_name = "lab"\n\n[store]\nbackend = "memory"\n')

    cfg = apply_config_data(HubRuntimeConfig(), load_toml(str(path)))
    assert cfg.hub_name == "lab"
    assert cfg.store_backend == "memory"


def test_logging_levels_table() -> None:
    cfg = apply_config_data(
        HubRuntimeConfig(), {"logging": {"level": "INFO", "levels": {"router": "DEBUG"}}}
    )
    assert cfg.log_levels == {"router": "DEBUG"}
    assert HubRuntimeConfig().log_levels == {}
