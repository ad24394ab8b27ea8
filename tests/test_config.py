import logging
import os

import pytest
import yaml

from config import load_config, setup_logging

VALID_CONFIG = {
    'discord_token_env': 'TOKEN',
    'guild_id': '1000',
    'roles': {'monitored_role_id': '2000'},
    'channels': {'mod_log_channel_id': 3000},
    'commands': {'prefix': '!'},
    'messages': {
        'dm_message': 'bye',
        'ban_reason': 'reason',
        'status_template': 'Banned ({count}) Minors',
    },
    'moderation': {'dm_delay_seconds': 1},
    'storage': {'ban_record_file': 'banned_ids.json', 'ban_offset_file': 'ban_offset.json'},
    'logging': {'log_file': 'logs/autoban.log', 'level': 'INFO'},
}


def write_config(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def test_load_valid_config(tmp_path):
    config = load_config(write_config(tmp_path, VALID_CONFIG))
    assert config['guild_id'] == 1000
    assert config['roles']['monitored_role_id'] == 2000
    assert config['channels']['mod_log_channel_id'] == 3000
    assert config['moderation']['dm_delay_seconds'] == 1.0
    assert config['storage']['ban_record_file'] == os.path.join(str(tmp_path), 'banned_ids.json')


def test_empty_log_channel_is_allowed(tmp_path):
    data = dict(VALID_CONFIG, channels={'mod_log_channel_id': None})
    assert load_config(write_config(tmp_path, data))['channels']['mod_log_channel_id'] is None


@pytest.mark.parametrize("key", ['guild_id', 'roles', 'messages', 'storage', 'discord_token_env'])
def test_missing_key_exits(tmp_path, key):
    data = {k: v for k, v in VALID_CONFIG.items() if k != key}
    with pytest.raises(SystemExit) as exc:
        load_config(write_config(tmp_path, data))
    assert exc.value.code == 1


def test_status_template_needs_placeholder(tmp_path):
    data = dict(VALID_CONFIG, messages=dict(VALID_CONFIG['messages'], status_template='Banned'))
    with pytest.raises(SystemExit):
        load_config(write_config(tmp_path, data))


def test_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit):
        load_config(str(tmp_path / "nope.yaml"))


def test_bad_yaml_exits(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("guild_id: [unclosed")
    with pytest.raises(SystemExit):
        load_config(str(path))


def test_setup_logging_creates_log_dir(tmp_path):
    log_file = tmp_path / "logs" / "autoban.log"
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        logger = setup_logging({'logging': {'log_file': str(log_file), 'level': 'debug'}})
        assert logger.name == "AutobanBot"
        assert root.level == logging.DEBUG
        assert log_file.parent.is_dir()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers: root.addHandler(handler)
        root.setLevel(saved_level)


@pytest.mark.parametrize("template", ['Banned ({count}) {minors}', 'Banned ({count}) {0}', 'Banned ({count}) {'])
def test_status_template_with_other_fields_exits(tmp_path, template):
    data = dict(VALID_CONFIG, messages=dict(VALID_CONFIG['messages'], status_template=template))
    with pytest.raises(SystemExit):
        load_config(write_config(tmp_path, data))


def test_log_file_resolves_against_config_dir(tmp_path):
    config = load_config(write_config(tmp_path, VALID_CONFIG))
    assert config['logging']['log_file'] == os.path.join(str(tmp_path), 'logs/autoban.log')
