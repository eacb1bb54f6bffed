#!/bin/env python3
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""Serve the example echo application over mutual TLS.

Only clients holding a key issued from the same catkeys dir get through. With
--check-key-exists, clients whose key has since been removed from the catkeys
dir are refused as well."""

import argparse
import logging
import sys

from catkeys import config
from catkeys import main as get_app
from catkeys.errors import CatkeysError
from catkeys.server import make_server

logger = logging.getLogger(__name__)


def cmdline(argv=None):
    parser = argparse.ArgumentParser(prog="catkeys_serve")

    config.add_inifile_argument(parser)
    config.add_verbosity_argument(parser)
    config.add_keydir_argument(parser)
    config.add_check_key_exists_argument(parser)

    parser.add_argument("--host", help="Address to listen on", default="")
    parser.add_argument("-p", "--port", help="Port to listen on", type=int)
    parser.add_argument(
        "-n",
        "--name",
        help="Common name of the server key to present",
        type=str,
    )

    args = parser.parse_args(argv)
    args.server = True
    return args


def main(argv=None):
    """Main, as called from the console script"""
    args = cmdline(argv)
    config_path = args.inifile

    config.setup_logging(config_path)
    config.configure_log_level(args)
    settings = config.get_appsettings(config_path)

    try:
        keydir = config.get_keydir(args, settings)
        server_name = config.get_common_name(args, settings)
        server = make_server(
            args.host,
            config.get_port(args, settings),
            get_app({}, **settings),
            keydir,
            server_name=server_name,
            check_key_exists=config.get_check_key_exists(args, settings),
        )
    except CatkeysError as error:
        logger.error("Could not start server: %s", error)
        sys.exit(1)

    logger.info("Serving on port %d with keys from %s",
                server.server_address[1], keydir)
    with server:
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
