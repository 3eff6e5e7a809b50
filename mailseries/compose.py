#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
__author__ = 'Konstantin Ryabitsev <konstantin@linuxfoundation.org>'

import re

import mailseries

from typing import Optional, Tuple, List, Dict

logger = mailseries.logger

SEPARATOR_RE = re.compile(r'^From [0-9a-f]{40,64} Mon Sep 17 00:00:00 2001$')
# git writes the cover letter against the all-zero object id
COVER_SEPARATOR_RE = re.compile(r'^From 0{40,64} Mon Sep 17 00:00:00 2001$')
HEADER_RE = re.compile(r'^([\w-]+):\s?(.*)$')
COVER_SUBJECT_RE = re.compile(r'^(Subject:.*) \*\*\* SUBJECT HERE \*\*\*$')
MSGID_RE = re.compile(r'^Message-ID: <(.*)>', flags=re.I)

BLURB_MARKER = '*** BLURB HERE ***'
SIG_DELIMITER = '-- '
DIFFSTAT_DELIMITER = '---'


class Header:
    """The header block of one message: everything between the mbox
    separator line and the first empty line."""
    start: int
    end: int
    spans: Dict[str, List[int]]
    lines: List[str]

    def __init__(self, lines: List[str], start: int):
        self.lines = lines
        self.start = start
        self.end = start
        self.spans = dict()

    @staticmethod
    def parse(lines: List[str], start: int) -> 'Header':
        hdr = Header(lines, start)
        current = None
        i = start
        while i < len(lines) and lines[i] != '':
            line = lines[i]
            if line[0] in (' ', '\t'):
                # folded continuation of the previous header
                if current is not None:
                    current[1] = i + 1
                i += 1
                continue
            current = None
            matches = HEADER_RE.match(line)
            if matches:
                hname = matches.group(1).lower()
                if hname not in hdr.spans:
                    current = [i, i + 1]
                    hdr.spans[hname] = current
                elif hname in ('from', 'cc'):
                    raise mailseries.DocumentError('Duplicate %s: header' % matches.group(1))
            i += 1

        if i >= len(lines):
            raise mailseries.DocumentError('Header block starting at line %s is not terminated' % (start + 1))
        hdr.end = i
        if 'from' not in hdr.spans:
            raise mailseries.DocumentError('Missing From: line')
        return hdr

    def get(self, hname: str) -> Optional[str]:
        span = self.spans.get(hname.lower())
        if span is None:
            return None
        first, stop = span
        value = HEADER_RE.match(self.lines[first]).group(2)
        for line in self.lines[first + 1:stop]:
            value += ' ' + line.strip()
        return value.strip()

    @property
    def fromaddr(self) -> str:
        return self.get('from')

    @property
    def cc(self) -> Optional[str]:
        return self.get('cc')

    @property
    def subject(self) -> Optional[str]:
        return self.get('subject')

    @property
    def msgid(self) -> Optional[str]:
        msgid = self.get('message-id')
        if msgid is None:
            return None
        return msgid.strip('<>')


class PatchDocument:
    """Concatenated format-patch output, kept as a list of lines."""
    lines: List[str]

    def __init__(self, text: str):
        self.lines = text.rstrip('\n').split('\n')

    def as_string(self) -> str:
        return '\n'.join(self.lines) + '\n'

    def insert(self, at: int, newlines: List[str]) -> int:
        """Insert newlines before index at and return the index right after them."""
        self.lines[at:at] = newlines
        return at + len(newlines)

    def get_headers(self) -> List[Header]:
        headers = list()
        for i, line in enumerate(self.lines):
            if SEPARATOR_RE.match(line):
                headers.append(Header.parse(self.lines, i + 1))
        return headers

    def get_messages(self) -> List[Tuple[str, str]]:
        """Split into (mbox separator line, message) pairs."""
        messages = list()
        separator = None
        current = list()
        for line in self.lines:
            if SEPARATOR_RE.match(line):
                if separator is not None:
                    messages.append((separator, '\n'.join(current).rstrip('\n') + '\n'))
                separator = line
                current = list()
                continue
            if separator is not None:
                current.append(line)
        if separator is not None:
            messages.append((separator, '\n'.join(current).rstrip('\n') + '\n'))
        return messages


def add_description(doc: PatchDocument, subject: str, body: str) -> None:
    """Put the branch description below the blurb marker of the cover letter,
    subject line first and the body a paragraph further down."""
    lines = doc.lines
    for i in range(len(lines) - 1):
        if lines[i] == BLURB_MARKER and lines[i + 1] == '':
            break
    else:
        raise mailseries.DocumentError('No BLURB line?')

    newlines = [subject, '']
    if body:
        newlines += body.split('\n') + ['']
    doc.insert(i + 2, newlines)


def fix_authorship(doc: PatchDocument, me: str) -> None:
    """Send everything as me; Cc the real author and restate them with
    an in-body From: line so the authorship survives git am. The cover
    letter is always ours and is left alone."""
    lines = doc.lines
    i = 0
    while i < len(lines):
        if not SEPARATOR_RE.match(lines[i]) or COVER_SEPARATOR_RE.match(lines[i]):
            i += 1
            continue
        hdr = Header.parse(lines, i + 1)
        author = hdr.fromaddr
        i += 1
        if mailseries.same_address(author, me):
            continue
        logger.debug('Cc-ing %s', author)
        # bottom-most first so the spans we computed stay valid
        doc.insert(hdr.end + 1, ['From: %s' % mailseries.clean_header(author), ''])
        fstart, fstop = hdr.spans['from']
        if 'cc' in hdr.spans:
            cstart = hdr.spans['cc'][0]
            lines[cstart] = 'Cc: %s, %s' % (author, HEADER_RE.match(lines[cstart]).group(2))
        else:
            doc.insert(fstop, ['Cc: %s' % author])
        lines[fstart:fstop] = ['From: %s' % me]


def normalize_cover_letter(doc: PatchDocument) -> None:
    """Drop the SUBJECT/BLURB placeholders, pulling the paragraph that follows
    the blurb marker up into the Subject: line."""
    lines = doc.lines
    for i, line in enumerate(lines):
        matches = COVER_SUBJECT_RE.match(line)
        if matches:
            subject = i
            break
    else:
        raise mailseries.DocumentError('Could not find cover letter')

    lines[subject] = matches.group(1)
    i = subject
    while i < len(lines) and lines[i] != '':
        i += 1
    body = i
    i += 1
    if i + 3 >= len(lines):
        raise mailseries.DocumentError('Could not find cover letter')
    if lines[i] != BLURB_MARKER:
        raise mailseries.DocumentError('No BLURB line?')
    if lines[i + 1] != '':
        raise mailseries.DocumentError('Line after BLURB not empty')
    i += 2
    while i < len(lines) and lines[i] != '':
        lines[subject] += ' ' + lines[i].strip()
        i += 1
    del lines[body:i]


def get_tag_message(doc: PatchDocument, cover_letter: bool, summary: Optional[str] = None) -> str:
    if not cover_letter:
        if summary is None:
            raise mailseries.DocumentError('No commit summary for the tag message')
        return summary

    lines = doc.lines
    for i, line in enumerate(lines):
        matches = re.match(r'^Subject: (.*)', line)
        if not matches:
            continue
        tagmsg = [matches.group(1)]
        while i < len(lines) and lines[i] != '':
            i += 1
        while i < len(lines) and lines[i] != SIG_DELIMITER:
            tagmsg.append(lines[i])
            i += 1
        return '\n'.join(tagmsg)

    raise mailseries.DocumentError('No Subject: line found')


def find_footer(doc: PatchDocument, cover_letter: bool) -> int:
    """Where trailers go: right above the signature of the cover letter, or
    right below the --- line of a lone patch."""
    lines = doc.lines
    if cover_letter:
        if SIG_DELIMITER not in lines:
            raise mailseries.DocumentError('No signature delimiter in the cover letter')
        return lines.index(SIG_DELIMITER)

    if DIFFSTAT_DELIMITER not in lines:
        raise mailseries.DocumentError('No --- line in the patch')
    return lines.index(DIFFSTAT_DELIMITER) + 1


def insert_links(doc: PatchDocument, footer: int, web_url: str, tagname: str,
                 basedon: Optional[str] = None) -> int:
    if basedon:
        footer = doc.insert(footer, [
            'Based-On: %s at %s' % (basedon, web_url),
            'Fetch-Base-Via: git fetch %s %s' % (web_url, basedon),
        ])
    footer = doc.insert(footer, [
        'Published-As: %s/releases/tag/%s' % (web_url, tagname),
        'Fetch-It-Via: git fetch %s %s' % (web_url, tagname),
    ])
    return footer


def get_first_msgid(doc: PatchDocument) -> str:
    for line in doc.lines:
        matches = MSGID_RE.match(line)
        if matches:
            return matches.group(1)
    raise mailseries.DocumentError('No Message-ID found')


def add_tag_trailers(tagmsg: str, msgid: str, midurlprefix: str, reply_chain: List[str]) -> str:
    trailers = ['Submitted-As: %s%s' % (midurlprefix, msgid)]
    for inreplyto in reply_chain:
        trailers.append('In-Reply-To: %s%s' % (midurlprefix, inreplyto))
    # the default prefix starts with a space
    trailers = [re.sub(r':\s+', ': ', x, count=1) for x in trailers]
    return tagmsg.rstrip() + '\n\n' + '\n'.join(trailers) + '\n'


def insert_interdiff(doc: PatchDocument, footer: int, interdiff: str, oldrev: int) -> int:
    quoted = [' ' + x for x in interdiff.rstrip('\n').split('\n')]
    return doc.insert(footer, ['', 'Interdiff vs v%s:' % oldrev] + quoted)


def compose_document(ctx: 'mailseries.RunContext', text: str) -> Tuple[str, str]:
    """Rewrite format-patch output into the text we send; also returns the
    message for the iteration tag."""
    doc = PatchDocument(text)
    cover_letter = ctx.description is not None
    state = ctx.state

    logger.info('Adding Cc: and explicit From: lines for other authors, if needed')
    fix_authorship(doc, ctx.me)

    if cover_letter:
        logger.info('Fixing Subject: line of the cover letter')
        normalize_cover_letter(doc)

    logger.info('Generating tag message')
    tagmsg = get_tag_message(doc, cover_letter, summary=ctx.summary)

    logger.debug('Finding location for the footers')
    footer = find_footer(doc, cover_letter)

    if ctx.web_url:
        logger.info('Inserting links')
        footer = insert_links(doc, footer, ctx.web_url, state.tagname, basedon=ctx.basedon)

    tagmsg = add_tag_trailers(tagmsg, get_first_msgid(doc), ctx.profile.midurlprefix, state.reply_chain)

    if state.interdiff:
        logger.info('Inserting interdiff')
        insert_interdiff(doc, footer, state.interdiff, state.number - 1)

    return doc.as_string(), tagmsg
