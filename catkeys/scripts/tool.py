#!/bin/env python3
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""Admin tool to create, revoke and list keys in a catkeys dir."""

import argparse
import sys

from catkeys import config, issuer
from catkeys.errors import CatkeysError
from catkeys.keystore import KeyStore


def cmdline(argv=None):
    """Parse commandline."""
    parser = argparse.ArgumentParser(prog="catkeys")

    config.add_inifile_argument(parser)
    config.add_verbosity_argument(parser)

    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.required = True

    create = commands.add_parser("create-key", help="create a new key")
    config.add_name_arguments(create)
    config.add_keydir_argument(create)
    create.set_defaults(func=create_key)

    revoke = commands.add_parser(
        "revoke-key", help="remove a key, servers checking key existence "
        "will refuse it")
    config.add_name_arguments(revoke)
    config.add_keydir_argument(revoke)
    revoke.set_defaults(func=revoke_key)

    listing = commands.add_parser("list-keys", help="list issued keys")
    listing.add_argument(
        "-s",
        "--server",
        help="List server keys instead of client keys",
        action="store_true",
    )
    config.add_keydir_argument(listing)
    listing.set_defaults(func=list_keys)

    return parser.parse_args(argv)


def error_out(message, exc=None):
    """Print error message and exit with failure code."""
    if exc is not None:
        message = "{}: {}".format(message, exc)
    print(message, file=sys.stderr)
    sys.exit(1)


def create_key(args, settings):
    keydir = config.get_keydir(args, settings)
    common_name = config.get_common_name(args, settings)
    record = issuer.create_key(keydir, common_name, server=args.server)
    print("Created {} key {!r} in {}".format(
        record.role, record.common_name, keydir))


def revoke_key(args, settings):
    keydir = config.get_keydir(args, settings)
    common_name = config.get_common_name(args, settings)
    role = issuer.role_for(args.server)
    KeyStore(keydir).delete(role, common_name)
    print("Removed {} key {!r} from {}".format(role, common_name, keydir))


def list_keys(args, settings):
    store = KeyStore(config.get_keydir(args, settings))
    for common_name in store.list(issuer.role_for(args.server)):
        print(common_name)


def main(argv=None):
    """Entrypoint of application."""
    args = cmdline(argv)
    config.setup_logging(args.inifile)
    config.configure_log_level(args)
    settings = config.get_appsettings(args.inifile)

    messages = {
        create_key: "Failed to create key",
        revoke_key: "Failed to revoke key",
        list_keys: "Failed to list keys",
    }
    try:
        args.func(args, settings)
    except (CatkeysError, ValueError) as exc:
        error_out(messages[args.func], exc=exc)


if __name__ == "__main__":
    main()
