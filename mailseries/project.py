#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
__author__ = 'Konstantin Ryabitsev <konstantin@linuxfoundation.org>'

import mailseries

from typing import Optional, List

logger = mailseries.logger

DEFAULT_MIDURLPREFIX = ' Message-ID: '

# Projects are recognized by the presence of a well-known early commit
KNOWN_PROJECTS = [
    {
        'name': 'git',
        'marker': 'e83c5163316f89bfbde',
        'to': 'git@vger.kernel.org',
        'cc': ['Junio C Hamano <gitster@pobox.com>'],
        # The first of these that the branch is based on wins
        'upstream': ['upstream/seen', 'upstream/pu', 'upstream/next', 'upstream/master'],
        'midurlprefix': 'https://public-inbox.org/git/',
    },
    {
        'name': 'cygwin',
        'marker': 'a3acbf46947e52ff596',
        'to': 'cygwin-patches@cygwin.com',
        'cc': [],
        'upstream': ['cygwin/master'],
        'midurlprefix': 'https://www.mail-archive.com/search?l=cygwin-patches@cygwin.com&q=',
    },
    {
        'name': 'busybox',
        'marker': 'cc8ed39b240180b5881',
        'to': 'busybox@busybox.net',
        'cc': [],
        'upstream': ['busybox/master'],
        'midurlprefix': 'https://www.mail-archive.com/search?l=busybox@busybox.net&q=',
    },
]


class ProjectProfile:
    name: str
    to: str
    cc: List[str]
    upstream: str
    midurlprefix: str

    def __init__(self, name: str, to: str, upstream: str, cc: Optional[List[str]] = None,
                 midurlprefix: Optional[str] = None):
        self.name = name
        self.to = to
        self.upstream = upstream
        self.cc = list(cc) if cc else list()
        if midurlprefix is None:
            midurlprefix = DEFAULT_MIDURLPREFIX
        self.midurlprefix = midurlprefix

    def __repr__(self) -> str:
        out = list()
        out.append('  name: %s' % self.name)
        out.append('  to: %s' % self.to)
        out.append('  cc: %s' % ', '.join(self.cc))
        out.append('  upstream: %s' % self.upstream)
        out.append('  midurlprefix: %s' % self.midurlprefix)
        return '\n'.join(out)


def pick_upstream(branch: str, candidates: List[str]) -> Optional[str]:
    existing = [x for x in candidates if mailseries.git_commit_exists(None, x)]
    if not existing:
        return None
    for candidate in existing:
        if not mailseries.git_rev_list(f'refs/heads/{branch}..{candidate}'):
            return candidate
    # Nothing fits, the rebase check will complain about the last one
    return existing[-1]


def get_configured_profile() -> Optional[ProjectProfile]:
    config = mailseries.get_main_config()
    if not config.get('to') or not config.get('upstream'):
        return None
    cc = config.get('cc', list())
    if isinstance(cc, str):
        cc = [cc]
    return ProjectProfile('local', config['to'], config['upstream'], cc=cc,
                          midurlprefix=config.get('midurlprefix'))


def detect_project(branch: str) -> ProjectProfile:
    for project in KNOWN_PROJECTS:
        if not mailseries.git_commit_exists(None, project['marker']):
            continue
        logger.debug('Recognized the %s project', project['name'])
        upstream = pick_upstream(branch, project['upstream'])
        if upstream is None:
            raise mailseries.PreconditionError('None of %s exist' % ', '.join(project['upstream']))
        return ProjectProfile(project['name'], project['to'], upstream, cc=project['cc'],
                              midurlprefix=project['midurlprefix'])

    profile = get_configured_profile()
    if profile is not None:
        logger.debug('Using the project configured in mail.to and mail.upstream')
        return profile

    raise mailseries.PreconditionError('Unrecognized project')
