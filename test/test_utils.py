from digicert_codesigning_integration import utils
import envparse
import pytest
import logging
import subprocess
import base64
import os


@pytest.mark.parametrize('value,expected', [
    ('C:\\a.exe', ['C:\\a.exe']),
    ('C:\\a.exe;C:\\b.exe', ['C:\\a.exe', 'C:\\b.exe']),
    ('C:\\a.exe;C:\\b.exe;C:\\Program Files\\c.dll', [
        'C:\\a.exe', 'C:\\b.exe', 'C:\\Program Files\\c.dll']),
])
def test_split_input_paths(value, expected):
    paths = utils.split_input_paths(value)
    assert paths == expected
    assert len(paths) == value.count(';') + 1


def test_split_input_paths_custom_separator():
    assert utils.split_input_paths('/tmp/a,/tmp/b', ',') == ['/tmp/a', '/tmp/b']


@pytest.mark.parametrize('value', [None, '', '   ', ' ; '])
def test_split_input_paths_empty(value):
    assert utils.split_input_paths(value) == []


def test_check_required_config_options_all_set():
    utils.check_required_config_options([('A', 'x'), ('B', 'y')])


def test_check_required_config_options_one_missing():
    with pytest.raises(envparse.ConfigurationError) as e:
        utils.check_required_config_options([('A', 'x'), ('B', '')])
    assert str(e.value) == "Required configuration option 'B' is not set."


def test_check_required_config_options_reports_all_missing_in_order():
    with pytest.raises(envparse.ConfigurationError) as e:
        utils.check_required_config_options([('A', None), ('B', 'y'), ('C', None)])
    assert str(e.value) == "Required configuration options 'A', 'C' are not set."


def test_decode_client_cert():
    assert utils.decode_client_cert(base64.b64encode(b'\x00cert').decode()) == b'\x00cert'


def test_decode_client_cert_ignores_line_breaks():
    data = b'\x30\x82' + b'x' * 200
    wrapped = base64.encodebytes(data).decode()
    assert '\n' in wrapped.rstrip('\n')
    assert utils.decode_client_cert(wrapped) == data
    assert utils.decode_client_cert(base64.b64encode(b'cert').decode() + '\n') == b'cert'
    assert utils.decode_client_cert('  Y2Vy\r\ndA==  ') == b'cert'


def test_decode_client_cert_invalid():
    with pytest.raises(envparse.ConfigurationError):
        utils.decode_client_cert('not base64!')


def test_stage_and_remove_client_cert(tmp_path):
    logger = logging.getLogger()
    path = utils.stage_client_cert(logger, tmp_path / 'certs' / 'client.p12',
                                   base64.b64encode(b'secret').decode())
    assert path.read_bytes() == b'secret'

    utils.remove_client_cert(logger, path)
    assert not path.exists()

    # Removing twice is not an error.
    utils.remove_client_cert(logger, path)


@pytest.mark.skipif(os.name == 'nt', reason='POSIX file modes')
def test_stage_client_cert_is_private(tmp_path):
    path = utils.stage_client_cert(logging.getLogger(), tmp_path / 'client.p12',
                                   base64.b64encode(b'secret').decode())
    assert path.stat().st_mode & 0o777 == 0o600


def test_stage_client_cert_write_error(caplog, tmp_path):
    blocker = tmp_path / 'not-a-directory'
    blocker.write_text('')
    with pytest.raises(utils.AbortException):
        utils.stage_client_cert(logging.getLogger(), blocker / 'client.p12',
                                base64.b64encode(b'secret').decode())

    assert 'Unable to write client authentication certificate' in caplog.text


def test_detect_smctl_path_user_provided():
    assert str(utils.detect_smctl_path(os.path.join('tools', 'smctl'))) == \
        os.path.join('tools', 'smctl')


def test_invoke_command_success(monkeypatch, caplog):
    caplog.set_level(logging.INFO)

    def mock_subprocess_run(*args, **kwargs):
        return subprocess.CompletedProcess(args=[], returncode=0, stdout='hello')

    monkeypatch.setattr(subprocess, 'run', mock_subprocess_run)
    output = utils.invoke_command(
        logging.getLogger(), 'Saying hello.', 'Said hello.', 'Error saying hello', 'echo',
        print_output_on_success=False, command=['echo', 'hello world'])

    assert output == 'hello'
    assert "Running: echo 'hello world'" in caplog.text
    assert 'Said hello.' in caplog.text


def test_invoke_command_failure(monkeypatch, caplog):
    caplog.set_level(logging.INFO)

    def mock_subprocess_run(*args, **kwargs):
        return subprocess.CompletedProcess(args=[], returncode=2, stdout='oops')

    monkeypatch.setattr(subprocess, 'run', mock_subprocess_run)
    with pytest.raises(utils.AbortException):
        utils.invoke_command(
            logging.getLogger(), 'Saying hello.', 'Said hello.', 'Error saying hello', 'echo',
            print_output_on_success=False, command=['echo'])

    assert "Error saying hello: command exited with code 2" in caplog.text
    assert 'oops' in caplog.text


def test_invoke_command_failure_unchecked(monkeypatch, caplog):
    caplog.set_level(logging.INFO)

    def mock_subprocess_run(*args, **kwargs):
        return subprocess.CompletedProcess(args=[], returncode=2, stdout='')

    monkeypatch.setattr(subprocess, 'run', mock_subprocess_run)
    output = utils.invoke_command(
        logging.getLogger(), 'Saying hello.', 'Said hello.', 'Error saying hello', 'echo',
        print_output_on_success=False, command=['echo'], check=False)

    assert output is None
    assert "Error saying hello: command exited with code 2" in caplog.text


def test_invoke_command_timeout(monkeypatch, caplog):
    caplog.set_level(logging.INFO)
    received = {}

    def mock_subprocess_run(*args, **kwargs):
        received.update(kwargs)
        raise subprocess.TimeoutExpired(cmd=args[0], timeout=kwargs['timeout'])

    monkeypatch.setattr(subprocess, 'run', mock_subprocess_run)
    with pytest.raises(utils.CommandTimeoutException):
        utils.invoke_command(
            logging.getLogger(), 'Sleeping.', None, 'Error sleeping', 'sleep',
            print_output_on_success=False, command=['sleep', '100'], timeout=5,
            check=False)

    assert received['timeout'] == 5
    assert "Command 'sleep' did not finish within 5 seconds" in caplog.text


def test_invoke_command_missing_executable(monkeypatch, caplog):
    def mock_subprocess_run(*args, **kwargs):
        raise FileNotFoundError(2, 'No such file or directory')

    monkeypatch.setattr(subprocess, 'run', mock_subprocess_run)
    with pytest.raises(utils.AbortException):
        utils.invoke_command(
            logging.getLogger(), 'Running.', None, 'Error running', 'nonexistent',
            print_output_on_success=False, command=['nonexistent'])

    assert "Unable to run 'nonexistent'" in caplog.text


def test_invoke_command_merges_env(monkeypatch):
    received = {}

    def mock_subprocess_run(*args, **kwargs):
        received.update(kwargs)
        return subprocess.CompletedProcess(args=[], returncode=0, stdout='')

    monkeypatch.setenv('SOME_PARENT_VAR', 'parent')
    monkeypatch.setattr(subprocess, 'run', mock_subprocess_run)
    utils.invoke_command(
        logging.getLogger(), 'Running.', None, 'Error running', 'true',
        print_output_on_success=False, command=['true'], env={'CHILD_VAR': 'child'})

    assert received['env']['CHILD_VAR'] == 'child'
    assert received['env']['SOME_PARENT_VAR'] == 'parent'
    assert 'CHILD_VAR' not in os.environ
