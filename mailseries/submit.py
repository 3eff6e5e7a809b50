#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
__author__ = 'Konstantin Ryabitsev <konstantin@linuxfoundation.org>'

import sys
import argparse

import mailseries
import mailseries.branch
import mailseries.compose
import mailseries.iteration
import mailseries.project
import mailseries.publish
import mailseries.send

logger = mailseries.logger


def show_or_add_cc(branch: str, values: list) -> None:
    if not values:
        for addr in mailseries.branch.get_cc(branch):
            print(addr)
        return
    for value in values:
        mailseries.branch.add_cc(branch, value)


def show_or_set_basedon(branch: str, value) -> None:
    if value is True:
        basedon = mailseries.branch.get_basedon(branch)
        if basedon:
            print(basedon)
        return
    mailseries.branch.set_basedon(branch, value)


def prepare(ctx: mailseries.RunContext) -> None:
    """Figure out where we are and what we are about to send."""
    ctx.profile = mailseries.project.detect_project(ctx.branch)
    logger.debug('Project:\n%s', ctx.profile)
    ctx.upstream, ctx.basedon = mailseries.branch.resolve_base_branch(ctx.branch, ctx.profile.upstream,
                                                                      ctx.remote)
    ctx.cc = ctx.profile.cc + mailseries.branch.get_cc(ctx.branch)

    ctx.description = mailseries.branch.get_description(ctx.branch)
    if ctx.description is None:
        count = len(mailseries.git_rev_list(f'{ctx.upstream}..refs/heads/{ctx.branch}'))
        if count > 1:
            raise mailseries.PreconditionError('Branch %s needs a description' % ctx.branch)
        ctx.summary = mailseries.git_get_output(['log', '-1', '--format=%s', f'refs/heads/{ctx.branch}'])

    ctx.state = mailseries.iteration.determine_iteration(ctx.branch, ctx.upstream, redo=ctx.redo, rfc=ctx.rfc,
                                                         remote=ctx.remote)
    ctx.me = mailseries.get_author_ident()
    ctx.web_url = mailseries.publish.get_publish_web_url(ctx.remote)


def generate_mbox(ctx: mailseries.RunContext) -> str:
    # the cover letter From: is the committer identity
    gitargs = mailseries.git_identity_args()
    gitargs += ['format-patch', '--thread', '--stdout',
                '--add-header=Fcc: Sent',
                '--add-header=Content-Type: text/plain; charset=UTF-8',
                f'--base={ctx.upstream}', f'--to={ctx.profile.to}']
    for addr in ctx.cc:
        gitargs.append(f'--cc={addr}')
    for msgid in ctx.state.reply_chain:
        gitargs.append(f'--in-reply-to={msgid}')
    gitargs.append(f'--subject-prefix={ctx.state.subject_prefix}')
    if ctx.description is not None:
        gitargs += ['--cover-letter', '--cover-from-description=none']
    if ctx.patience:
        gitargs.append('--patience')
    gitargs.append(f'{ctx.upstream}..refs/heads/{ctx.branch}')

    logger.info('Generating mbox')
    text = mailseries.git_get_output(gitargs)
    if ctx.description is None:
        return text

    doc = mailseries.compose.PatchDocument(text)
    subject, body = mailseries.branch.split_description(ctx.description)
    mailseries.compose.add_description(doc, subject, body)
    return doc.as_string()


def make_tag(ctx: mailseries.RunContext, tagmsg: str) -> None:
    logger.info('Generating tag object %s', ctx.state.tagname)
    gitargs = mailseries.git_identity_args() + ['tag', '-F', '-', '-a']
    if ctx.redo:
        gitargs.append('-f')
    gitargs += [ctx.state.tagname, f'refs/heads/{ctx.branch}']
    mailseries.git_get_output(gitargs, stdin=tagmsg)


def submit(ctx: mailseries.RunContext) -> str:
    prepare(ctx)
    text, tagmsg = mailseries.compose.compose_document(ctx, generate_mbox(ctx))
    if ctx.dryrun:
        logger.info('DRYRUN: not tagging, sending or publishing')
        return text

    make_tag(ctx, tagmsg)
    sent = mailseries.send.send_document(text)
    logger.info('Sent %s messages', sent)
    mailseries.publish.publish_branch(ctx.remote, ctx.branch, ctx.state.tagname, redo=ctx.redo)
    return text


def main(cmdargs: argparse.Namespace) -> None:
    branch = mailseries.branch.get_branch_name()

    if cmdargs.cc is not None:
        show_or_add_cc(branch, cmdargs.cc)
        return
    if cmdargs.basedon is not None:
        show_or_set_basedon(branch, cmdargs.basedon)
        return

    config = mailseries.get_main_config()
    remote = cmdargs.publish_to_remote or config.get('publishtoremote')
    mailseries.publish.check_remote(remote)
    if not cmdargs.dryrun:
        mailseries.send.check_delivery()

    if len(mailseries.git_get_repo_status()):
        raise mailseries.PreconditionError('Repository contains uncommitted changes, stash or commit them first')

    ctx = mailseries.RunContext(branch, redo=cmdargs.redo, rfc=cmdargs.rfc, patience=cmdargs.patience,
                                dryrun=cmdargs.dryrun, remote=remote)
    text = submit(ctx)
    if ctx.dryrun:
        sys.stdout.write(text)
