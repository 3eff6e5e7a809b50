import pytest  # noqa
import mailseries
import mailseries.branch
import mailseries.command
import mailseries.compose
import mailseries.iteration
import mailseries.submit
import os
import sys


def get_sent(gitdir):
    with open(os.path.join(os.path.dirname(gitdir), 'sent.mbox'), 'r') as fh:
        return fh.read()


def get_subjects(text):
    doc = mailseries.compose.PatchDocument(text)
    return [x.subject for x in doc.get_headers()]


def test_single_patch_first_iteration(gitdir, make_commit):
    make_commit('a.txt', 'a\n', 'Add a')
    ctx = mailseries.RunContext('topic')
    text = mailseries.submit.submit(ctx)
    assert get_subjects(text) == ['[PATCH] Add a']
    assert get_sent(gitdir) == text
    assert 'Published-As' not in text

    msgid = mailseries.compose.get_first_msgid(mailseries.compose.PatchDocument(text))
    tagmsg = mailseries.iteration.get_tag_message('topic-v1')
    assert tagmsg.startswith('Add a\n\n')
    assert f'Submitted-As: Message-ID: {msgid}' in tagmsg.split('\n')


def test_cover_letter_from_description(gitdir, make_commit):
    make_commit('a.txt', 'a\n', 'Add a')
    make_commit('b.txt', 'b\n', 'Add b')
    mailseries.git_set_config(None, 'branch.topic.description', 'Title\nBody.')
    ctx = mailseries.RunContext('topic', dryrun=True)
    text = mailseries.submit.submit(ctx)
    assert get_subjects(text) == ['[PATCH 0/2] Title', '[PATCH 1/2] Add a', '[PATCH 2/2] Add b']
    lines = text.split('\n')
    assert '*** BLURB HERE ***' not in lines
    hdr = mailseries.compose.PatchDocument(text).get_headers()[0]
    assert lines[hdr.end + 1] == 'Body.'
    # dry runs leave no traces
    assert not mailseries.git_commit_exists(None, 'refs/tags/topic-v1')
    assert not os.path.exists(os.path.join(os.path.dirname(gitdir), 'sent.mbox'))


def test_multiple_patches_need_description(gitdir, make_commit):
    make_commit('a.txt', 'a\n', 'Add a')
    make_commit('b.txt', 'b\n', 'Add b')
    ctx = mailseries.RunContext('topic', dryrun=True)
    with pytest.raises(mailseries.PreconditionError, match='needs a description'):
        mailseries.submit.submit(ctx)


def test_other_author(gitdir, make_commit):
    make_commit('a.txt', 'a\n', 'Add a', author='Other Person <other@example.com>')
    ctx = mailseries.RunContext('topic', dryrun=True)
    text = mailseries.submit.submit(ctx)
    hdr = mailseries.compose.PatchDocument(text).get_headers()[0]
    assert hdr.fromaddr == 'Test Override <test-override@example.com>'
    assert hdr.cc == 'Other Person <other@example.com>'
    lines = text.split('\n')
    assert lines[hdr.end + 1:hdr.end + 3] == ['From: Other Person <other@example.com>', '']


def test_rfc_and_branch_cc(gitdir, make_commit):
    make_commit('a.txt', 'a\n', 'Add a')
    mailseries.branch.add_cc('topic', 'Reviewer <reviewer@example.com>')
    ctx = mailseries.RunContext('topic', rfc=True, dryrun=True)
    text = mailseries.submit.submit(ctx)
    hdr = mailseries.compose.PatchDocument(text).get_headers()[0]
    assert hdr.subject == '[PATCH/RFC] Add a'
    assert hdr.get('to') == 'list@example.com'
    assert hdr.cc == 'Reviewer <reviewer@example.com>'


def test_next_iteration_after_rebase(gitdir, remote, make_commit):
    mailseries.git_set_config(None, 'remote.origin.pushurl', remote)
    mailseries.git_set_config(None, 'remote.origin.url', 'https://github.com/example/repo')
    make_commit('a.txt', 'a\n', 'Add a')
    first = mailseries.submit.submit(mailseries.RunContext('topic', remote='origin'))
    v1msgid = mailseries.compose.get_first_msgid(mailseries.compose.PatchDocument(first))
    assert 'Published-As: https://github.com/example/repo/releases/tag/topic-v1' in first.split('\n')

    with pytest.raises(mailseries.AlreadySubmittedError):
        mailseries.submit.submit(mailseries.RunContext('topic', remote='origin'))

    mailseries.git_get_output(['checkout', '-q', 'master'])
    make_commit('upstream.txt', 'upstream\n', 'Upstream change')
    mailseries.git_get_output(['checkout', '-q', 'topic'])
    mailseries.git_get_output(['rebase', '-q', 'master'])
    make_commit('a.txt', 'a, improved\n', 'Improve a')
    mailseries.git_set_config(None, 'branch.topic.description', 'Add a\n\nNow improved.')

    ctx = mailseries.RunContext('topic', remote='origin')
    text = mailseries.submit.submit(ctx)
    assert ctx.state.number == 2
    assert get_subjects(text)[0] == '[PATCH v2 0/2] Add a'

    lines = text.split('\n')
    hdr = mailseries.compose.PatchDocument(text).get_headers()[0]
    assert hdr.get('in-reply-to') == f'<{v1msgid}>'
    # links and interdiff sit right above the cover letter signature
    footer = lines.index('-- ')
    links = lines.index('Published-As: https://github.com/example/repo/releases/tag/topic-v2')
    assert links < footer
    assert lines[links + 1:links + 5] == [
        'Fetch-It-Via: git fetch https://github.com/example/repo topic-v2',
        '',
        'Interdiff vs v1:',
        ' diff --git a/a.txt b/a.txt',
    ]
    assert lines[footer - 1] == ' +a, improved'
    assert 'upstream.txt' not in '\n'.join(lines[links:footer])

    pushed = mailseries.git_get_output(['ls-remote', 'origin'])
    for ref in ('refs/heads/topic', 'refs/tags/topic-v1', 'refs/tags/topic-v1-rebased', 'refs/tags/topic-v2'):
        assert ref in pushed

    tagmsg = mailseries.iteration.get_tag_message('topic-v2')
    assert f'In-Reply-To: Message-ID: {v1msgid}' in tagmsg.split('\n')


def test_main_cc_and_basedon(gitdir, capsys):
    parser = mailseries.command.setup_parser()
    cmdargs = parser.parse_args(['--cc', 'One <one@example.com>, Two <two@example.com>'])
    mailseries.submit.main(cmdargs)
    capsys.readouterr()
    mailseries.submit.main(parser.parse_args(['--cc']))
    assert capsys.readouterr().out == 'One <one@example.com>\nTwo <two@example.com>\n'

    mailseries.submit.main(parser.parse_args(['--basedon', 'master']))
    mailseries.submit.main(parser.parse_args(['--basedon']))
    assert capsys.readouterr().out == 'master\n'
    mailseries.submit.main(parser.parse_args(['--basedon', '']))
    assert mailseries.branch.get_basedon('topic') is None


def test_main_dry_run(gitdir, make_commit, capsys):
    make_commit('a.txt', 'a\n', 'Add a')
    parser = mailseries.command.setup_parser()
    mailseries.submit.main(parser.parse_args(['--dry-run', '--patience']))
    out = capsys.readouterr().out
    assert get_subjects(out) == ['[PATCH] Add a']


def test_main_preconditions(gitdir, make_commit):
    make_commit('a.txt', 'a\n', 'Add a')
    parser = mailseries.command.setup_parser()
    with pytest.raises(mailseries.PreconditionError, match='No valid remote'):
        mailseries.submit.main(parser.parse_args(['--publish-to-remote=nowhere']))

    mailseries.git_unset_config(None, 'alias.send-mbox')
    with pytest.raises(mailseries.PreconditionError, match='send-mbox'):
        mailseries.submit.main(parser.parse_args([]))

    with open('a.txt', 'w') as fh:
        fh.write('changed\n')
    with pytest.raises(mailseries.PreconditionError, match='uncommitted changes'):
        mailseries.submit.main(parser.parse_args(['--dry-run']))


def test_config_override(gitdir):
    mailseries.git_set_config(None, 'mail.to', 'list@example.com')
    mailseries.git_set_config(None, 'mail.cc', 'One <one@example.com>', operation='--add')
    mailseries.git_set_config(None, 'mail.cc', 'Two <two@example.com>', operation='--add')
    parser = mailseries.command.setup_parser()
    mailseries.setup_config(parser.parse_args(['-c', 'mail.to=other@example.com', '-c', 'user.name=Someone']))
    config = mailseries.get_main_config()
    assert config['to'] == 'other@example.com'
    assert config['cc'] == ['One <one@example.com>', 'Two <two@example.com>']
    assert config['patattsign'] == 'no'
    assert mailseries.get_author_ident() == 'Someone <test-override@example.com>'


def test_cmd_fatal_exit(gitdir, monkeypatch):
    mailseries.git_get_output(['checkout', '-q', 'HEAD^0'])
    monkeypatch.setattr(sys, 'argv', ['mail-patch-series', '-q', '--dry-run'])
    with pytest.raises(SystemExit) as ex:
        mailseries.command.cmd()
    assert ex.value.code == 1


def test_redo_replaces_latest_iteration(gitdir, remote, make_commit, monkeypatch):
    mailseries.git_set_config(None, 'remote.origin.pushurl', remote)
    mailseries.git_set_config(None, 'remote.origin.url', 'https://github.com/example/repo')
    make_commit('a.txt', 'a\n', 'Add a')
    first = mailseries.submit.submit(mailseries.RunContext('topic', remote='origin'))
    v1msgid = mailseries.compose.get_first_msgid(mailseries.compose.PatchDocument(first))
    make_commit('b.txt', 'b\n', 'Add b')
    mailseries.git_set_config(None, 'branch.topic.description', 'Add a and b\n\nBoth of them.')
    mailseries.submit.submit(mailseries.RunContext('topic', remote='origin'))
    oldtag = mailseries.git_revparse_obj('refs/tags/topic-v2')

    # a later tagger date makes the new tag object differ from the old one
    monkeypatch.setenv('GIT_COMMITTER_DATE', '2030-01-01T00:00:00 +0000')
    ctx = mailseries.RunContext('topic', redo=True, remote='origin')
    text = mailseries.submit.submit(ctx)
    assert ctx.state.number == 2
    assert get_subjects(text)[0] == '[PATCH v2 0/2] Add a and b'
    assert mailseries.iteration.list_iteration_tags('topic') == ['topic-v2', 'topic-v1']
    assert not mailseries.git_commit_exists(None, 'refs/tags/topic-v3')

    newtag = mailseries.git_revparse_obj('refs/tags/topic-v2')
    assert newtag != oldtag
    msgid = mailseries.compose.get_first_msgid(mailseries.compose.PatchDocument(text))
    tagmsg = mailseries.iteration.get_tag_message('topic-v2').split('\n')
    assert f'Submitted-As: Message-ID: {msgid}' in tagmsg
    assert f'In-Reply-To: Message-ID: {v1msgid}' in tagmsg

    remote_v2 = mailseries.git_get_output(['ls-remote', 'origin', 'refs/tags/topic-v2']).split()[0]
    assert remote_v2 == newtag


def test_identity_override_cover_letter(gitdir, make_commit):
    mailseries.git_set_config(None, 'mail.to', 'list@example.com')
    mailseries.git_set_config(None, 'mail.upstream', 'master')
    make_commit('a.txt', 'a\n', 'Add a')
    make_commit('b.txt', 'b\n', 'Add b')
    mailseries.git_set_config(None, 'branch.topic.description', 'Title\nBody.')
    parser = mailseries.command.setup_parser()
    mailseries.setup_config(parser.parse_args(['-c', 'user.name=Someone Else', '--dry-run']))

    text = mailseries.submit.submit(mailseries.RunContext('topic', dryrun=True))
    headers = mailseries.compose.PatchDocument(text).get_headers()
    assert headers[0].subject == '[PATCH 0/2] Title'
    assert headers[0].fromaddr == 'Someone Else <test-override@example.com>'
    # same mailbox, so the patches are still our own
    assert [x.cc for x in headers] == [None, None, None]
    # one From: per message, no restated authors
    assert len([x for x in text.split('\n') if x.startswith('From: ')]) == 3


def test_identity_override_own_patch(gitdir, make_commit):
    mailseries.git_set_config(None, 'mail.to', 'list@example.com')
    mailseries.git_set_config(None, 'mail.upstream', 'master')
    make_commit('a.txt', 'a\n', 'Add a')
    parser = mailseries.command.setup_parser()
    mailseries.setup_config(parser.parse_args(['-c', 'user.name=Someone Else', '--dry-run']))

    text = mailseries.submit.submit(mailseries.RunContext('topic', dryrun=True))
    hdr = mailseries.compose.PatchDocument(text).get_headers()[0]
    assert hdr.fromaddr == 'Test Override <test-override@example.com>'
    assert hdr.cc is None
    assert text.split('\n')[hdr.end + 1] != 'From: Test Override <test-override@example.com>'
