#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
__author__ = 'Konstantin Ryabitsev <konstantin@linuxfoundation.org>'

import argparse
import logging
import mailseries
import sys

logger = mailseries.logger


class ConfigOption(argparse.Action):
    """Action class for storing key=value arguments in a dict."""
    def __call__(self, parser, namespace, keyval, option_string=None):
        config = getattr(namespace, self.dest, None)

        if config is None:
            config = dict()
            setattr(namespace, self.dest, config)

        if '=' in keyval:
            key, value = keyval.split('=', maxsplit=1)
        else:
            # mimic git -c option
            key, value = keyval, 'true'

        config[key] = value


def setup_parser() -> argparse.ArgumentParser:
    # noinspection PyTypeChecker
    parser = argparse.ArgumentParser(
        prog='mail-patch-series',
        description='Send the current branch as a (new iteration of a) patch series to a mailing list',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=mailseries.__VERSION__)
    parser.add_argument('-d', '--debug', action='store_true', default=False,
                        help='Add more debugging info to the output')
    parser.add_argument('-q', '--quiet', action='store_true', default=False,
                        help='Output critical information only')
    parser.add_argument('-c', '--config', metavar='NAME=VALUE', action=ConfigOption,
                        help='Set config option NAME to VALUE. Override value from config files. '
                             'NAME is in dotted section.key format. Using NAME= and omitting VALUE '
                             'will set the value to the empty string. Using NAME and omitting =VALUE '
                             'will set the value to "true".')

    parser.add_argument('--redo', action='store_true', default=False,
                        help='Regenerate and resend the most recent iteration')
    parser.add_argument('--rfc', action='store_true', default=False,
                        help='Mark the series as a request for comments')
    parser.add_argument('--publish-to-remote', dest='publish_to_remote', metavar='REMOTE', default=None,
                        help='Push the branch and the iteration tag to this remote (default: mail.publishtoremote)')
    parser.add_argument('--patience', action='store_true', default=False,
                        help='Generate the patches using the patience diff algorithm')
    parser.add_argument('--dry-run', dest='dryrun', action='store_true', default=False,
                        help='Print the messages instead of tagging, sending and publishing')

    ag = parser.add_mutually_exclusive_group()
    ag.add_argument('--cc', nargs='*', metavar='ADDRESS', default=None,
                    help='Show the addresses Cc-ed on every iteration of this branch, or add to them')
    ag.add_argument('--basedon', nargs='?', metavar='BRANCH', const=True, default=None,
                    help='Show the branch this branch is based on, or set it (empty value to remove)')

    return parser


def cmd():
    parser = setup_parser()
    cmdargs = parser.parse_args()
    logger.setLevel(logging.DEBUG)

    ch = logging.StreamHandler()
    formatter = logging.Formatter('%(message)s')
    ch.setFormatter(formatter)

    if cmdargs.quiet:
        ch.setLevel(logging.CRITICAL)
    elif cmdargs.debug:
        ch.setLevel(logging.DEBUG)
    else:
        ch.setLevel(logging.INFO)

    logger.addHandler(ch)

    import mailseries.submit
    try:
        mailseries.setup_config(cmdargs)
        mailseries.submit.main(cmdargs)
    except RuntimeError as ex:
        logger.critical('CRITICAL: %s', ex)
        sys.exit(1)


if __name__ == '__main__':
    cmd()
