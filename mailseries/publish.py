#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
__author__ = 'Konstantin Ryabitsev <konstantin@linuxfoundation.org>'

import re

import mailseries

from typing import Optional, List

logger = mailseries.logger


def get_remote_url(remote: str) -> Optional[str]:
    return mailseries.git_get_config(None, f'remote.{remote}.url')


def get_web_url(url: str) -> Optional[str]:
    """Turn a fetch URL of a recognized hosting site into its web URL."""
    url = url.strip()
    matches = re.match(r'^(?:https?://|ssh://git@|git@)github\.com[:/](.+?)(?:\.git)?/?$', url)
    if not matches:
        return None
    return 'https://github.com/%s' % matches.group(1)


def get_publish_web_url(remote: Optional[str]) -> Optional[str]:
    if not remote:
        return None
    url = get_remote_url(remote)
    if not url:
        return None
    return get_web_url(url)


def check_remote(remote: Optional[str]) -> None:
    if remote and not get_remote_url(remote):
        raise mailseries.PreconditionError('No valid remote: %s' % remote)


def push_tags(remote: str, tags: List[str], force: bool = False) -> None:
    refspecs = list()
    for tagname in tags:
        refspec = f'refs/tags/{tagname}'
        if force:
            refspec = '+' + refspec
        refspecs.append(refspec)
    logger.info('Pushing %s to %s', ', '.join(tags), remote)
    mailseries.git_get_output(['push', '-q', remote] + refspecs)


def publish_branch(remote: Optional[str], branch: str, tagname: str, redo: bool = False) -> None:
    if not remote:
        logger.debug('No remote to publish to')
        return

    logger.info('Publishing branch and tag')
    tagref = f'refs/tags/{tagname}'
    if redo:
        tagref = '+' + tagref
    mailseries.git_get_output(['push', '-q', remote, f'+refs/heads/{branch}', tagref])
