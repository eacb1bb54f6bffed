#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""catkeys.config is a helper library that standardizes and collects the logic
in one place used by the catkeys CLI tools/scripts"""

import argparse
import logging
import os
from logging.config import dictConfig

import pyramid.paster as paster
from pyramid.settings import asbool

from .issuer import default_common_name
from .keystore import locate_keydir

LOG_LEVEL = {
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

DEFAULT_LOGGING_CONFIG = {
    "version": 1,
    "formatters": {
        "generic": {
            "format": "%(asctime)s %(levelname)-5.5s [%(name)s][%(threadName)s]"
            "%(message)s"
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "level": "NOTSET",
            "formatter": "generic",
        },
    },
    "loggers": {
        "": {  # root logger
            "handlers": ["console"],
            "level": "INFO",
        },
        "catkeys": {
            "level": "DEBUG",
            "qualname": "catkeys",
        },
    },
}

DEFAULT_APP_SETTINGS = {
    "catkeys.client.default_common_name": "client",
    "catkeys.server.default_common_name": "server",
    "catkeys.check_key_exists": False,
    "catkeys.port": 1443,
}


def add_inifile_argument(parser, env=None):
    """Adds an argument to the parser for the config-file, defaults to
    CATKEYS_INI in the environment"""
    if env is None:
        env = os.environ
    default_ini = env.get("CATKEYS_INI")

    parser.add_argument(
        "-c",
        "--config",
        help="Path to a specific .ini-file to use as config",
        dest="inifile",
        default=default_ini,
        type=str,
    )


def add_keydir_argument(parser):
    """Adds an argument for the key directory to a given parser"""
    parser.add_argument(
        "-k",
        "--keydir",
        help="Path to catkeys dir (will search upwards from the current "
        "directory by default)",
        type=str,
    )


def add_verbosity_argument(parser):
    """Adds an argument for verbosity to a given parser, counting the amount of
    'v's and 'verbose' on the commandline"""
    parser.add_argument(
        "-v",
        "--verbose",
        help="Verbosity of root logger, increasing the more 'v's are added",
        action="count",
        default=0,
    )


def add_name_arguments(parser):
    """Adds the common name and the server/client switch"""
    parser.add_argument(
        "-n",
        "--name",
        help="Common name of client/server key",
        type=str,
    )
    parser.add_argument(
        "-s",
        "--server",
        help="Use a server key, default is a client key",
        action="store_true",
    )


def add_check_key_exists_argument(parser):
    parser.add_argument(
        "--check-key-exists",
        help="Refuse clients whose key has been removed from the key "
        "directory",
        action="store_true",
        dest="check_key_exists",
        default=None,
    )


def _get_config_value(
    arguments: argparse.Namespace,
    variable,
    required=False,
    setting_name=None,
    settings=None,
    default=None,
    env=None,
):
    """Returns what value to use for a given config variable, prefer argument >
    env-variable > config-file, if a value cant be found and default is not
    None, default is returned"""
    result = None
    if setting_name is None:
        setting_name = variable
    if settings is not None:
        result = settings.get(setting_name, result)

    if env is None:
        env = os.environ
    env_var = "CATKEYS_" + variable.upper().replace("-", "_")
    result = env.get(env_var, result)

    arg_value = getattr(arguments, variable, result)
    result = arg_value if arg_value is not None else result

    if result is None:
        result = default

    if required and result is None:
        raise ValueError(
            f"No {variable} could be found as either an argument,"
            f" in the environment variable {env_var} or in the config file",
            variable,
            env_var,
        )
    return result


def get_keydir(arguments=None, settings=None, env=None, start=None):
    """Returns the key directory to use, prefer argument > env-variable >
    config-file > the nearest catkeys dir above start"""
    keydir = _get_config_value(
        arguments,
        variable="keydir",
        setting_name="catkeys.keydir",
        settings=settings,
        env=env,
    )
    if keydir is None:
        keydir = locate_keydir(start)
    return keydir


def get_common_name(arguments: argparse.Namespace, settings=None):
    """The --name given, or the configured default for the role"""
    if getattr(arguments, "name", None):
        return arguments.name
    return default_common_name(getattr(arguments, "server", False), settings)


def get_check_key_exists(arguments=None, settings=None, env=None):
    return asbool(
        _get_config_value(
            arguments,
            variable="check_key_exists",
            setting_name="catkeys.check_key_exists",
            settings=settings,
            default=False,
            env=env,
        )
    )


def get_port(arguments=None, settings=None, env=None):
    return int(
        _get_config_value(
            arguments,
            variable="port",
            setting_name="catkeys.port",
            settings=settings,
            default=DEFAULT_APP_SETTINGS["catkeys.port"],
            env=env,
        )
    )


def get_log_level(argument_level, logger=None, env=None):
    """Calculates the highest verbosity(here inverted) from the argument,
    environment and root, capping it to between logging.DEBUG(10)-logging.ERROR(40),
    returning the log level"""

    if env is None:
        env = os.environ
    env_level_name = env.get("CATKEYS_LOG_LEVEL", "ERROR").upper()
    env_level = LOG_LEVEL[env_level_name]

    if logger is None:
        logger = logging.getLogger()
    current_level = logger.level

    argument_verbosity = logging.ERROR - argument_level * 10  # level steps are 10
    verbosity = min(argument_verbosity, env_level, current_level)
    log_level = (
        verbosity if logging.DEBUG <= verbosity <= logging.ERROR else logging.ERROR
    )
    return log_level


def configure_log_level(arguments: argparse.Namespace, logger=None):
    """Sets the root loggers level to the highest verbosity from the argument,
    environment and config-file"""
    log_level = get_log_level(arguments.verbose)
    if logger is None:
        logger = logging.getLogger()
    logger.setLevel(log_level)


def setup_logging(config_path=None):
    """wrapper for pyramid.paster.setup_logging using file at config_path, if
    no config_path is passed on use dictionary DEFAULT_LOGGING_CONFIG"""
    if config_path:
        paster.setup_logging(config_path)
    else:
        dictConfig(DEFAULT_LOGGING_CONFIG)


def get_appsettings(config_path):
    """wrapper for pyramid.paster.get_appsettings, if a config_path is not
    given then return DEFAULT_APP_SETTINGS"""
    if config_path:
        settings = dict(DEFAULT_APP_SETTINGS)
        settings.update(paster.get_appsettings(config_path))
        return settings
    else:
        return DEFAULT_APP_SETTINGS
