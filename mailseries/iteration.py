#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
__author__ = 'Konstantin Ryabitsev <konstantin@linuxfoundation.org>'

import re

import mailseries
import mailseries.publish

from typing import Optional, List

logger = mailseries.logger

REBASED_SUFFIX = '-rebased'

# Lines in a tag message that point at a previously sent message
REPLY_PATTERNS = [
    re.compile(r'https://public-inbox\.org/.*/([^/\s]+)/?\s*$'),
    re.compile(r'https://lore\.kernel\.org/.*/([^/\s]+)/?\s*$'),
    re.compile(r'https://www\.mail-archive\.com/search\?\S*?\bq=([^&\s]+)'),
    re.compile(r'http://mid\.gmane\.org/(\S+)'),
    re.compile(r'^[^ :]*:\s+Message-ID:\s+<?([^/<>\s]+)>?'),
]
TRAILER_KINDS = {
    'submitted-as': 'submitted',
    'in-reply-to': 'in-reply-to',
}


class ReplyReference:
    kind: str
    msgid: str

    def __init__(self, kind: str, msgid: str):
        self.kind = kind
        self.msgid = msgid

    def __eq__(self, other: 'ReplyReference') -> bool:
        return self.kind == other.kind and self.msgid == other.msgid

    def __repr__(self) -> str:
        return 'ReplyReference(%s, %s)' % (self.kind, self.msgid)

    @staticmethod
    def from_line(line: str) -> Optional['ReplyReference']:
        for pattern in REPLY_PATTERNS:
            matches = pattern.search(line)
            if not matches:
                continue
            kind = 'link'
            tmatch = re.match(r'^([\w-]+):\s', line)
            if tmatch:
                kind = TRAILER_KINDS.get(tmatch.group(1).lower(), 'link')
            return ReplyReference(kind, matches.group(1))
        return None


class IterationState:
    branch: str
    number: int
    rfc: bool
    reply_chain: List[str]
    interdiff: str
    previous: Optional[str]
    rebased: Optional[str]

    def __init__(self, branch: str, number: int = 1, rfc: bool = False,
                 reply_chain: Optional[List[str]] = None, interdiff: str = '',
                 previous: Optional[str] = None, rebased: Optional[str] = None):
        self.branch = branch
        self.number = number
        self.rfc = rfc
        self.reply_chain = reply_chain if reply_chain else list()
        self.interdiff = interdiff
        self.previous = previous
        self.rebased = rebased

    @property
    def subject_prefix(self) -> str:
        prefix = 'PATCH'
        if self.rfc:
            prefix += '/RFC'
        if self.number > 1:
            prefix += ' v%s' % self.number
        return prefix

    @property
    def tagname(self) -> str:
        return make_tagname(self.branch, self.number)

    def __repr__(self) -> str:
        out = list()
        out.append('  branch: %s' % self.branch)
        out.append('  number: %s' % self.number)
        out.append('  subject_prefix: %s' % self.subject_prefix)
        out.append('  reply_chain: %s' % ', '.join(self.reply_chain))
        out.append('  previous: %s' % self.previous)
        out.append('  rebased: %s' % self.rebased)
        return '\n'.join(out)


def make_tagname(branch: str, number: int) -> str:
    return f'{branch}-v{number}'


def get_tag_number(branch: str, tagname: str) -> Optional[int]:
    matches = re.match(r'^%s-v([1-9][0-9]*)$' % re.escape(branch), tagname)
    if not matches:
        return None
    return int(matches.group(1))


def list_iteration_tags(branch: str) -> List[str]:
    """Iteration tags of the branch, most recently created first."""
    gitargs = ['for-each-ref', '--format=%(refname)', '--sort=-version:refname', '--sort=-taggerdate',
               f'refs/tags/{branch}-v*[0-9]']
    tags = list()
    for line in mailseries.git_get_output(gitargs).split('\n'):
        tagname = re.sub(r'^refs/tags/', '', line.strip())
        if tagname and get_tag_number(branch, tagname) is not None:
            tags.append(tagname)
    return tags


def get_tag_message(tagname: str) -> str:
    contents = mailseries.git_get_output(['cat-file', 'tag', f'refs/tags/{tagname}'])
    chunks = contents.split('\n\n', 1)
    if len(chunks) < 2:
        return ''
    return chunks[1]


def parse_reply_references(tagmsg: str) -> List[ReplyReference]:
    refs = list()
    for line in tagmsg.split('\n'):
        ref = ReplyReference.from_line(line)
        if ref is not None:
            refs.append(ref)
    return refs


def get_reply_chain(refs: List[ReplyReference]) -> List[str]:
    """Order message-ids oldest first: whatever the previous iteration was
    itself replying to, followed by what it was submitted as."""
    chain = [x.msgid for x in refs if x.kind != 'submitted']
    chain += [x.msgid for x in refs if x.kind == 'submitted']
    return chain


def ensure_rebased_tag(branch: str, tagname: str, upstream: str, remote: Optional[str] = None) -> str:
    """Make sure <tagname>-rebased holds tagname's commits on top of the
    current upstream, creating or refreshing it as needed."""
    rebased = tagname + REBASED_SUFFIX
    rebasedref = f'refs/tags/{rebased}'
    if mailseries.git_commit_exists(None, rebasedref):
        if not mailseries.git_rev_list(f'{rebasedref}..{upstream}'):
            logger.debug('%s is up to date with %s', rebased, upstream)
            return rebased
        logger.info('Re-rebasing %s', rebased)
        force = True
    else:
        logger.info('Rebasing %s', tagname)
        force = False

    tagmsg = get_tag_message(tagname)
    with mailseries.git_temp_checkout(f'refs/tags/{tagname}', branch):
        identity = mailseries.git_identity_args()
        mailseries.git_get_output(identity + ['rebase', '-q', upstream])
        gitargs = identity + ['tag', '-a', '-F', '-']
        if force:
            gitargs.append('-f')
        gitargs.append(rebased)
        mailseries.git_get_output(gitargs, stdin=tagmsg)
        if remote:
            mailseries.publish.push_tags(remote, [rebased], force=force)

    return rebased


def determine_iteration(branch: str, upstream: str, redo: bool = False, rfc: bool = False,
                        remote: Optional[str] = None) -> IterationState:
    tags = list_iteration_tags(branch)
    if redo:
        latest = tags[1] if len(tags) > 1 else None
    else:
        latest = tags[0] if tags else None

    if latest is None:
        state = IterationState(branch, rfc=rfc)
        logger.info('Submitting %s v%s', branch, state.number)
        return state

    tagref = f'refs/tags/{latest}'
    if not mailseries.git_rev_list(f'{tagref}..refs/heads/{branch}'):
        raise mailseries.AlreadySubmittedError('Branch %s was already submitted: %s' % (branch, latest))

    number = get_tag_number(branch, latest) + 1
    reply_chain = get_reply_chain(parse_reply_references(get_tag_message(latest)))
    logger.debug('Reply chain: %s', ', '.join(reply_chain))

    rebased = None
    if not mailseries.git_rev_list(f'{tagref}..{upstream}'):
        interdiff = mailseries.git_get_output(['diff', f'{tagref}..refs/heads/{branch}'])
    else:
        rebased = ensure_rebased_tag(branch, latest, upstream, remote=remote)
        interdiff = mailseries.git_get_output(['diff', f'refs/tags/{rebased}..refs/heads/{branch}'])

    state = IterationState(branch, number=number, rfc=rfc, reply_chain=reply_chain, interdiff=interdiff,
                           previous=latest, rebased=rebased)
    logger.info('Submitting %s v%s', branch, state.number)
    return state
