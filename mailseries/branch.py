#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
__author__ = 'Konstantin Ryabitsev <konstantin@linuxfoundation.org>'

import re
import email.utils

import mailseries

from typing import Optional, Tuple, List

logger = mailseries.logger


def get_branch_name() -> str:
    branch = mailseries.git_get_current_branch()
    if not branch:
        raise mailseries.PreconditionError('Not on a branch (detached HEAD?)')
    return branch


def get_description(branch: str) -> Optional[str]:
    desc = mailseries.git_get_config(None, f'branch.{branch}.description')
    if not desc or not desc.strip():
        return None
    return desc


def split_description(desc: str) -> Tuple[str, str]:
    """First line is the subject, the rest is the body."""
    lines = desc.strip().split('\n')
    subject = lines[0].strip()
    body = '\n'.join(lines[1:]).strip('\n')
    return subject, body


def get_cc(branch: str) -> List[str]:
    return [x for x in mailseries.git_get_config_all(None, f'branch.{branch}.cc') if x.strip()]


def lookup_author(who: str) -> Optional[str]:
    ecode, out = mailseries.git_run_command(None, ['log', '-1', '--format=%an <%ae>', f'--author={who}'])
    if ecode > 0 or not out.strip():
        return None
    return out.strip()


def add_cc(branch: str, value: str) -> List[str]:
    """Store one or more Cc addresses for the branch and return what was stored.
    Values without an @ are looked up as commit authors."""
    key = f'branch.{branch}.cc'
    if re.search(r'>.*>', value) or re.search(r'>,', value):
        addrs = list()
        for pair in email.utils.getaddresses([value]):
            if not pair[1]:
                continue
            addrs.append(email.utils.formataddr(pair))
    elif '@' in value:
        addrs = [value.strip()]
    else:
        ident = lookup_author(value)
        if not ident:
            raise mailseries.PreconditionError('Not an email address: %s' % value)
        addrs = [ident]

    for addr in addrs:
        logger.info('Adding Cc: %s', addr)
        mailseries.git_set_config(None, key, addr, operation='--add')
    return addrs


def get_basedon(branch: str) -> Optional[str]:
    basedon = mailseries.git_get_config(None, f'branch.{branch}.basedon')
    if not basedon:
        return None
    return basedon


def set_basedon(branch: str, basedon: str) -> None:
    key = f'branch.{branch}.basedon'
    if not basedon:
        logger.info('Removing the base branch of %s', branch)
        mailseries.git_unset_config(None, key)
        return
    logger.info('Basing %s on %s', branch, basedon)
    mailseries.git_set_config(None, key, basedon)


def resolve_base_branch(branch: str, upstream: str, remote: Optional[str]) -> Tuple[str, Optional[str]]:
    """Apply the per-branch basedon override, if any, and make sure the branch
    is rebased onto whatever upstream we end up with.

    Returns the upstream to use and the active override (or None)."""
    basedon = get_basedon(branch)
    if basedon:
        if not mailseries.git_commit_exists(None, basedon):
            raise mailseries.PreconditionError('Base branch does not exist: %s' % basedon)
        if not remote:
            raise mailseries.PreconditionError('Need a remote to publish to')

        remoteref = f'refs/remotes/{remote}/{basedon}'
        if not mailseries.git_commit_exists(None, remoteref):
            raise mailseries.PreconditionError('%s not pushed to %s' % (basedon, remote))

        commit = mailseries.git_revparse_obj(remoteref)
        if mailseries.git_revparse_obj(basedon) != commit:
            raise mailseries.PreconditionError('%s on %s disagrees with local branch' % (basedon, remote))

        logger.debug('Using %s as the base branch', basedon)
        upstream = basedon

    if mailseries.git_rev_list(f'refs/heads/{branch}..{upstream}'):
        raise mailseries.PreconditionError('Branch %s is not rebased to %s' % (branch, upstream))

    return upstream, basedon
