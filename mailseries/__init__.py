# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
import subprocess
import logging
import email.header
import email.utils
import re
import os
import copy
import argparse

import requests

from contextlib import contextmanager
from typing import Optional, Tuple, List, Union, Dict, Iterator

__VERSION__ = '0.1.0'

logger = logging.getLogger('mailseries')

DEFAULT_CONFIG = {
    # Remote to push the branch and the iteration tags to
    'publishtoremote': None,
    # A locally configured project, used when none of the known projects match
    'to': None,
    'upstream': None,
    'midurlprefix': None,
    # POST the finished messages to this URL instead of piping them into
    # the send-mbox alias
    'sendendpoint': None,
    # Sign each outgoing message with patatt
    'patattsign': 'no',
}

# This is where we store actual config
MAIN_CONFIG = None
# This is git-config user.*
USER_CONFIG = None

# Used for storing our requests session
REQSESSION = None


class GitError(RuntimeError):
    def __init__(self, args: List[str], ecode: int, err: str = ''):
        self.gitargs = args
        self.ecode = ecode
        self.err = err
        msg = 'git %s failed with status %s' % (' '.join(args), ecode)
        if err.strip():
            msg += ': %s' % err.strip().splitlines()[-1]
        super().__init__(msg)


class RunContext:
    """Everything one submission run works with, filled in as it goes."""
    branch: str
    redo: bool
    rfc: bool
    patience: bool
    dryrun: bool
    remote: Optional[str]
    web_url: Optional[str]
    profile: Optional['mailseries.project.ProjectProfile']
    upstream: Optional[str]
    basedon: Optional[str]
    cc: List[str]
    description: Optional[str]
    summary: Optional[str]
    me: Optional[str]
    state: Optional['mailseries.iteration.IterationState']

    def __init__(self, branch: str, redo: bool = False, rfc: bool = False, patience: bool = False,
                 dryrun: bool = False, remote: Optional[str] = None):
        self.branch = branch
        self.redo = redo
        self.rfc = rfc
        self.patience = patience
        self.dryrun = dryrun
        self.remote = remote
        self.web_url = None
        self.profile = None
        self.upstream = None
        self.basedon = None
        self.cc = list()
        self.description = None
        self.summary = None
        self.me = None
        self.state = None


class PreconditionError(RuntimeError):
    pass


class AlreadySubmittedError(PreconditionError):
    pass


class DocumentError(RuntimeError):
    pass


class DeliveryError(RuntimeError):
    pass


def _run_command(cmdargs: List[str], stdin: Optional[bytes] = None,
                 rundir: Optional[str] = None) -> Tuple[int, bytes, bytes]:
    logger.debug('Running %s' % ' '.join(cmdargs))
    sp = subprocess.Popen(cmdargs, stdout=subprocess.PIPE, stdin=subprocess.PIPE, stderr=subprocess.PIPE,
                          cwd=rundir)
    (output, error) = sp.communicate(input=stdin)

    return sp.returncode, output, error


def git_run_command(gitdir: Optional[str], args: List[str], stdin: Optional[bytes] = None,
                    logstderr: bool = False, decode: bool = True) -> Tuple[int, Union[str, bytes]]:
    cmdargs = ['git', '--no-pager']
    if gitdir:
        if os.path.exists(os.path.join(gitdir, '.git')):
            gitdir = os.path.join(gitdir, '.git')
        cmdargs += ['--git-dir', gitdir]

    cmdargs += args

    ecode, out, err = _run_command(cmdargs, stdin=stdin)

    if decode:
        out = out.decode(errors='replace')

    if logstderr and len(err.strip()):
        if decode:
            err = err.decode(errors='replace')
        logger.debug('Stderr: %s', err)
        out += err

    return ecode, out


def git_get_output(args: List[str], stdin: Optional[str] = None) -> str:
    """Run git in the current repository and return its output without the
    trailing newline. Any non-zero exit raises GitError."""
    bstdin = stdin.encode() if stdin is not None else None
    cmdargs = ['git', '--no-pager'] + args
    ecode, out, err = _run_command(cmdargs, stdin=bstdin)
    err = err.decode(errors='replace')
    if ecode > 0:
        raise GitError(args, ecode, err)
    if err.strip():
        logger.debug('Stderr: %s', err.strip())
    return out.decode(errors='replace').rstrip('\n')


def git_get_command_lines(gitdir: Optional[str], args: list) -> List[str]:
    ecode, out = git_run_command(gitdir, args)
    lines = list()
    if out:
        for line in out.split('\n'):
            if line == '':
                continue
            lines.append(line)

    return lines


def git_commit_exists(gitdir: Optional[str], commit_id: str) -> bool:
    gitargs = ['rev-parse', '-q', '--verify', commit_id]
    ecode, out = git_run_command(gitdir, gitargs)
    return ecode == 0


def git_revparse_obj(gitobj: str, gitdir: Optional[str] = None) -> str:
    ecode, out = git_run_command(gitdir, ['rev-parse', '-q', '--verify', gitobj])
    if ecode > 0:
        raise GitError(['rev-parse', '-q', '--verify', gitobj], ecode)
    return out.strip()


def git_rev_list(revrange: str) -> List[str]:
    return git_get_output(['rev-list', revrange]).split()


def git_get_repo_status(gitdir: Optional[str] = None, untracked: bool = False) -> List[str]:
    args = ['status', '--porcelain=v1']
    if not untracked:
        args.append('--untracked-files=no')
    return git_get_command_lines(gitdir, args)


def git_get_current_branch(gitdir: Optional[str] = None, short: bool = True) -> Optional[str]:
    gitargs = ['symbolic-ref', '-q', 'HEAD']
    ecode, out = git_run_command(gitdir, gitargs)
    if ecode > 0:
        logger.debug('Not able to get current branch (git symbolic-ref HEAD)')
        return None
    mybranch = out.strip()
    if short:
        return re.sub(r'^refs/heads/', '', mybranch)
    return mybranch


def git_rebase_in_progress() -> bool:
    for state in ('rebase-merge', 'rebase-apply'):
        ecode, out = git_run_command(None, ['rev-parse', '--git-path', state])
        if ecode == 0 and os.path.isdir(out.strip()):
            return True
    return False


@contextmanager
def git_temp_checkout(commitish: str, restore: str) -> Iterator[str]:
    """Context manager that checks out commitish (detached) and checks out
    the restore branch again when closed, whether the body succeeded or not.
    An interrupted rebase is aborted first so the restore can go through."""
    git_get_output(['checkout', '-q', f'{commitish}^0'])
    try:
        yield commitish
    finally:
        if git_rebase_in_progress():
            logger.info('Aborting the interrupted rebase')
            git_run_command(None, ['rebase', '--abort'])
        logger.debug('Restoring checkout of %s', restore)
        git_get_output(['checkout', '-q', restore])


def git_set_config(fullpath: Optional[str], param: str, value: str, operation: str = '--replace-all'):
    args = ['config', operation, param, value]
    ecode, out = git_run_command(fullpath, args)
    return ecode


def git_unset_config(fullpath: Optional[str], param: str) -> int:
    ecode, out = git_run_command(fullpath, ['config', '--unset-all', param])
    return ecode


def git_get_config(fullpath: Optional[str], param: str) -> Optional[str]:
    ecode, out = git_run_command(fullpath, ['config', param])
    if ecode > 0:
        return None
    return out.rstrip('\n')


def git_get_config_all(fullpath: Optional[str], param: str) -> List[str]:
    return git_get_command_lines(fullpath, ['config', '--get-all', param])


def get_config_from_git(regexp: str, defaults: Optional[dict] = None,
                        multivals: Optional[list] = None) -> dict:
    if multivals is None:
        multivals = list()
    args = ['config', '-z', '--get-regexp', regexp]
    ecode, out = git_run_command(None, args)
    gitconfig = defaults
    if not gitconfig:
        gitconfig = dict()
    if not out:
        return gitconfig

    for line in out.split('\x00'):
        if not line:
            continue
        if '\n' in line:
            key, value = line.split('\n', 1)
        else:
            key, value = line, 'true'
        try:
            chunks = key.split('.')
            cfgkey = chunks[-1].lower()
            if cfgkey in multivals:
                if cfgkey not in gitconfig:
                    gitconfig[cfgkey] = list()
                gitconfig[cfgkey].append(value)
            else:
                gitconfig[cfgkey] = value
        except ValueError:
            logger.debug('Ignoring git config entry %s', line)

    return gitconfig


def setup_config(cmdargs: Optional[argparse.Namespace] = None):
    """Setup configuration options. Needs to be called before accessing any of
    the config options."""
    _setup_main_config(cmdargs)
    _setup_user_config(cmdargs)


def _cmdline_config_override(cmdargs: Optional[argparse.Namespace], config: dict, section: str):
    """Use cmdline.config to set and override config values for section."""
    if cmdargs is None or not getattr(cmdargs, 'config', None):
        return

    section += '.'

    config_override = {
        key[len(section):]: val
        for key, val in cmdargs.config.items()
        if key.startswith(section)
    }

    config.update(config_override)


def _setup_main_config(cmdargs: Optional[argparse.Namespace] = None) -> None:
    global MAIN_CONFIG

    defcfg = copy.deepcopy(DEFAULT_CONFIG)
    config = get_config_from_git(r'^mail\..*', defaults=defcfg, multivals=['cc'])
    _cmdline_config_override(cmdargs, config, 'mail')

    MAIN_CONFIG = config


def get_main_config() -> Dict[str, Optional[Union[str, List[str]]]]:
    if MAIN_CONFIG is None:
        _setup_main_config()
    return MAIN_CONFIG


def _setup_user_config(cmdargs: Optional[argparse.Namespace] = None) -> None:
    global USER_CONFIG

    USER_CONFIG = get_config_from_git(r'^user\..*')
    _cmdline_config_override(cmdargs, USER_CONFIG, 'user')


def get_user_config() -> Dict[str, Optional[Union[str, List[str]]]]:
    if USER_CONFIG is None:
        _setup_user_config()
    return USER_CONFIG


def get_requests_session() -> requests.Session:
    global REQSESSION
    if REQSESSION is None:
        REQSESSION = requests.session()
        REQSESSION.headers.update({'User-Agent': 'mail-patch-series/%s' % __VERSION__})
    return REQSESSION


def git_identity_args() -> List[str]:
    """git -c options that make git itself use the configured identity,
    including any -c user.* overrides given on our command line."""
    usercfg = get_user_config()
    args = list()
    for key in ('name', 'email'):
        if usercfg.get(key):
            args += ['-c', 'user.%s=%s' % (key, usercfg[key])]
    return args


def get_author_ident() -> str:
    """Return the operator identity as "Name <email>"."""
    usercfg = get_user_config()
    if usercfg.get('name') and usercfg.get('email'):
        return '%s <%s>' % (usercfg['name'], usercfg['email'])
    ident = git_get_output(git_identity_args() + ['var', 'GIT_AUTHOR_IDENT'])
    matches = re.match(r'^(.*>)', ident)
    if not matches:
        raise PreconditionError('Could not determine author ident from %s' % ident)
    return matches.group(1)


def clean_header(hdrval: str) -> str:
    """Decode any RFC2047 encoded words and unfold the header value."""
    if hdrval is None:
        return ''

    decoded = ''
    for hstr, hcs in email.header.decode_header(hdrval):
        if hcs is None:
            hcs = 'utf-8'
        try:
            decoded += hstr.decode(hcs, errors='replace')
        except LookupError:
            # Try as utf-8
            decoded += hstr.decode('utf-8', errors='replace')
        except (UnicodeDecodeError, AttributeError):
            decoded += hstr
    new_hdrval = re.sub(r'\n?\s+', ' ', decoded)
    return new_hdrval.strip()


def same_address(left: str, right: str) -> bool:
    """Two "Name <email>" identities are the same person when the mailbox
    matches; display names may differ."""
    laddr = email.utils.parseaddr(clean_header(left))[1]
    raddr = email.utils.parseaddr(clean_header(right))[1]
    return laddr.lower() == raddr.lower()
