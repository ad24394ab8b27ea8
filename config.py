import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from typing import Any, Dict

import yaml

# --- Constants ---
CONFIG_FILE = os.environ.get("AUTOBAN_CONFIG", "config.yaml")
LOGGER_NAME = "AutobanBot"

logger = logging.getLogger(LOGGER_NAME)


# --- Configuration Loading ---
def load_config(config_file: str = CONFIG_FILE) -> Dict[str, Any]:
    """Loads and validates the configuration from config.yaml."""
    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)
        if not isinstance(config_data, dict):
            raise ValueError(f"Config file '{config_file}' must contain a mapping at the top level.")

        # Validate top-level keys
        required_keys = ['discord_token_env', 'guild_id', 'roles', 'channels', 'commands', 'messages', 'moderation', 'storage', 'logging']
        missing = [key for key in required_keys if key not in config_data]
        if missing:
            raise ValueError(f"Config file '{config_file}' missing required top-level keys: {missing}")

        if not config_data.get('discord_token_env'):
            raise ValueError("Config discord_token_env (name of env var for token) must be set.")
        if not config_data.get('guild_id'): raise ValueError("guild_id must be set in config.")
        config_data['guild_id'] = int(config_data['guild_id'])

        # Roles
        roles = config_data.get('roles') or {}
        if not roles.get('monitored_role_id'):
            raise ValueError("CRITICAL: roles.monitored_role_id cannot be empty.")
        roles['monitored_role_id'] = int(roles['monitored_role_id'])
        config_data['roles'] = roles

        # Channels (the mod log channel is optional)
        channels = config_data.get('channels') or {}
        channels['mod_log_channel_id'] = int(channels['mod_log_channel_id']) if channels.get('mod_log_channel_id') else None
        if not channels['mod_log_channel_id']: logger.warning("channels.mod_log_channel_id not set. Moderation actions will only be logged locally.")
        config_data['channels'] = channels

        # Commands
        cmd_config = config_data.get('commands') or {}
        prefix = cmd_config.get('prefix', '!')
        if not isinstance(prefix, str) or not prefix.strip():
            raise ValueError("commands.prefix must be a non-empty string.")
        cmd_config['prefix'] = prefix
        config_data['commands'] = cmd_config

        # Messages
        message_keys = ['dm_message', 'ban_reason', 'status_template']
        messages = config_data.get('messages') or {}
        if not all(messages.get(key) for key in message_keys):
            raise ValueError(f"Config messages missing required keys: {message_keys}")
        if '{count}' not in messages['status_template']:
            raise ValueError("messages.status_template must contain the '{count}' placeholder.")
        try:
            messages['status_template'].format(count=0)
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"messages.status_template may only use the '{{count}}' placeholder: {e!r}")
        config_data['messages'] = messages

        # Moderation timing
        moderation = config_data.get('moderation') or {}
        delay = moderation.get('dm_delay_seconds', 1.0)
        if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
            raise ValueError("moderation.dm_delay_seconds must be a non-negative number.")
        moderation['dm_delay_seconds'] = float(delay)
        config_data['moderation'] = moderation

        # Storage paths resolve against the config file's directory
        storage_keys = ['ban_record_file', 'ban_offset_file']
        storage = config_data.get('storage') or {}
        if not all(storage.get(key) for key in storage_keys):
            raise ValueError(f"Config storage missing required keys: {storage_keys}")
        base_dir = os.path.dirname(os.path.abspath(config_file))
        for key in storage_keys:
            storage[key] = os.path.join(base_dir, storage[key])
        config_data['storage'] = storage

        log_keys = ['log_file', 'level']
        log_config = config_data.get('logging') or {}
        if not all(key in log_config for key in log_keys):
             raise ValueError(f"Config logging missing required keys: {log_keys}")
        # Same base directory as the storage files
        log_config['log_file'] = os.path.join(base_dir, log_config['log_file'])
        config_data['logging'] = log_config

        return config_data
    except FileNotFoundError:
        print(f"CRITICAL ERROR: Config file '{config_file}' not found. Please create it based on config.yaml in the repository.")
        sys.exit(1)
    except yaml.YAMLError as e:
        print(f"CRITICAL ERROR: Error parsing config file '{config_file}': {e}")
        sys.exit(1)
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        print(f"CRITICAL ERROR: Configuration value error or missing key: {e}")
        sys.exit(1)


# --- Logging Setup ---
def setup_logging(config: Dict[str, Any]) -> logging.Logger:
    """Configures logging to console and file."""
    log_config = config.get('logging', {})
    log_level_str = str(log_config.get('level', 'INFO')).upper()
    log_file = log_config.get('log_file', 'autoban.log')

    log_level = getattr(logging, log_level_str, logging.INFO)
    log_formatter = logging.Formatter('%(asctime)s [%(levelname)-5.5s] [%(name)s] %(message)s')

    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    file_handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')
    file_handler.setFormatter(log_formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # Remove default handlers if any
    for handler in root_logger.handlers[:]: root_logger.removeHandler(handler)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Set discord lib logging level
    discord_log_level = logging.INFO if log_level <= logging.INFO else logging.WARNING
    logging.getLogger('discord').setLevel(discord_log_level)
    logging.getLogger('discord.http').setLevel(logging.WARNING)
    logging.getLogger('discord.gateway').setLevel(logging.WARNING)

    return logging.getLogger(LOGGER_NAME)
