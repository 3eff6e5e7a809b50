import pytest  # noqa
import mailseries
import os


@pytest.fixture(scope="function", autouse=True)
def settestdefaults(tmp_path):
    mailseries.MAIN_CONFIG = dict(mailseries.DEFAULT_CONFIG)
    mailseries.USER_CONFIG = {
        'name': 'Test Override',
        'email': 'test-override@example.com',
    }
    # Keep the developer's own git config out of the test repositories
    os.environ['HOME'] = str(tmp_path)
    os.environ['XDG_CONFIG_HOME'] = str(tmp_path)
    os.environ['GIT_CONFIG_NOSYSTEM'] = '1'


@pytest.fixture(scope="function")
def gitdir(tmp_path):
    """A repository with a single commit on master and the topic branch
    checked out on top of it."""
    dest = os.path.join(tmp_path, 'repo')
    mailseries.git_run_command(None, ['init', '-q', '--initial-branch=master', dest])
    olddir = os.getcwd()
    os.chdir(dest)
    mailseries.git_set_config(None, 'user.name', 'Test Override')
    mailseries.git_set_config(None, 'user.email', 'test-override@example.com')
    mailseries.git_set_config(None, 'alias.send-mbox', '!cat > %s' % os.path.join(tmp_path, 'sent.mbox'))
    mailseries.MAIN_CONFIG.update({
        'to': 'list@example.com',
        'upstream': 'master',
    })
    with open('README', 'w') as fh:
        fh.write('Hello\n')
    mailseries.git_get_output(['add', 'README'])
    mailseries.git_get_output(['commit', '-q', '-m', 'Initial commit'])
    mailseries.git_get_output(['checkout', '-q', '-b', 'topic'])
    yield dest
    os.chdir(olddir)


@pytest.fixture(scope="function")
def remote(gitdir, tmp_path):
    """A bare repository registered as the origin remote of gitdir."""
    dest = os.path.join(tmp_path, 'publish.git')
    mailseries.git_get_output(['init', '-q', '--bare', dest])
    mailseries.git_get_output(['remote', 'add', 'origin', dest])
    return dest


@pytest.fixture(scope="function")
def make_commit(gitdir):
    def _make_commit(fname, content, subject, author=None):
        with open(fname, 'w') as fh:
            fh.write(content)
        mailseries.git_get_output(['add', fname])
        gitargs = ['commit', '-q', '-m', subject]
        if author:
            gitargs.append(f'--author={author}')
        mailseries.git_get_output(gitargs)
        return mailseries.git_revparse_obj('HEAD')
    return _make_commit
