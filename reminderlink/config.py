"""
Settings for ReminderLink. Values are taken, in increasing order of precedence, from the defaults in ``SETTINGS``, the
configuration file (``conf.json`` in the data folder, or a custom file), environment variables and finally command
line options.

The ``SETTINGS`` dictionary accepts the following keys:

- ``role`` - either 'primary' or 'companion'.
- ``request_timeout`` - seconds to wait for the reply to a live request (2 to 5 seconds is sensible).
- ``refresh_minutes`` - interval of the background refresh.
- ``log_level`` - the logging level. Can be 'debug', 'info', 'warning' or 'critical'.
- ``coalesce_transfers`` - if True, only the newest queued durable transfer is kept (loopback transport only).
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path

from decouple import config

from reminderlink import helpers

#: Default settings.
SETTINGS = {
    'role': 'primary',
    'request_timeout': 3.0,
    'refresh_minutes': 30,
    'log_level': 'info',
    'coalesce_transfers': False,
}

#: Environment variables which override settings, and how to cast them.
ENV_OVERRIDES = {
    'role': ('REMINDERLINK_ROLE', str),
    'request_timeout': ('REMINDERLINK_REQUEST_TIMEOUT', float),
    'refresh_minutes': ('REMINDERLINK_REFRESH_MINUTES', int),
    'log_level': ('REMINDERLINK_LOG_LEVEL', str),
}


def bootstrap_settings() -> None:
    """
    Create configuration file if it doesn't exist.
    """
    conf_file = helpers.settings_folder() / 'conf.json'
    if not os.path.exists(conf_file):
        with open(conf_file, 'w') as fp:
            json.dump(SETTINGS, fp, indent=2)


def merge_settings(settings: dict, conf_file: str | Path) -> tuple[bool, str]:
    """
    Override any of the given settings with settings found in a configuration file. Unknown keys are ignored.

    :param settings: the settings to update in place.
    :param conf_file: path to the configuration file.

    :returns:

        -success (:py:class:`bool`) - true if the file was read, or does not exist.

        -data (:py:class:`str`) - error message on failure, or success message.

    """
    if not os.path.exists(conf_file):
        return True, 'No configuration file at {}'.format(conf_file)
    with open(conf_file) as fp:
        try:
            loaded_settings = json.load(fp)
        except json.decoder.JSONDecodeError:
            return False, "Your configuration file at {} is invalid. Please check syntax.".format(conf_file)
    for key in settings.keys():
        if key in loaded_settings:
            settings[key] = loaded_settings[key]
    return True, 'Settings merged from {}'.format(conf_file)


def apply_environment(settings: dict) -> None:
    """
    Override settings with any ``REMINDERLINK_*`` environment variables which are set.

    :param settings: the settings to update in place.
    """
    for key, (variable, cast) in ENV_OVERRIDES.items():
        value = config(variable, default=None)
        if value is not None:
            settings[key] = cast(value)


def load_settings(conf_file: str | Path | None = None) -> tuple[bool, str] | tuple[bool, dict]:
    """
    Load settings from defaults, the configuration file and the environment.

    :param conf_file: path to a custom configuration file. Defaults to ``conf.json`` in the data folder.

    :returns:

        -success (:py:class:`bool`) - true if settings are loaded and valid.

        -data (:py:class:`str` | :py:class:`dict`) - error message on failure, or the settings.

    """
    settings = copy.deepcopy(SETTINGS)
    conf_file = conf_file if conf_file else helpers.settings_folder() / 'conf.json'
    success, data = merge_settings(settings, conf_file)
    if not success:
        logging.critical(data)
        return False, data
    apply_environment(settings)

    if settings['role'] not in ('primary', 'companion'):
        return False, "Invalid role {}. Use 'primary' or 'companion'.".format(settings['role'])
    if float(settings['request_timeout']) <= 0:
        return False, "Request timeout must be positive."
    if settings['log_level'] not in ('debug', 'info', 'warning', 'critical'):
        return False, "Invalid log level {}.".format(settings['log_level'])
    return True, settings
