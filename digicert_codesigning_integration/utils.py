import envparse
import os
import base64
import binascii
import pathlib
import subprocess
import shlex


class AbortException(Exception):
    pass


class CommandTimeoutException(AbortException):
    pass


def check_required_config_options(options):
    """
    Raises a ConfigurationError naming every option in `options` (a list of
    (name, value) pairs) whose value is unset, empty or blank. Names are reported
    in the order given.
    """
    missing = [name for name, value in options if value is None or value.strip() == '']
    if len(missing) == 1:
        raise envparse.ConfigurationError(
            f"Required configuration option '{missing[0]}' is not set.")
    if len(missing) > 1:
        names = ', '.join(f"'{name}'" for name in missing)
        raise envparse.ConfigurationError(
            f"Required configuration options {names} are not set.")


def create_dataclass_inputs_from_env(schema):
    env = envparse.Env(**schema)
    result = {}
    for key in schema.keys():
        result[key.lower()] = env(key)
    return result


def split_input_paths(value, separator=';'):
    if value is None or value.strip() == '':
        return []
    paths = []
    for part in value.split(separator):
        part = part.strip()
        if part != '':
            paths.append(part)
    return paths


def decode_client_cert(data_base64) -> bytes:
    try:
        return base64.b64decode(''.join(data_base64.split()), validate=True)
    except (binascii.Error, ValueError):
        raise envparse.ConfigurationError(
            "'SM_CLIENT_CERT_FILE_B64' does not contain valid base64 data.")


def stage_client_cert(logger, path, data_base64):
    logger.info(f'Writing client authentication certificate to {path}')
    data = decode_client_cert(data_base64)
    path = pathlib.Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
    except OSError as e:
        logger.error('Unable to write client authentication certificate to %s: %s', path, e)
        raise AbortException()
    return path


def remove_client_cert(logger, path):
    try:
        os.unlink(path)
        logger.info(f'Removed client authentication certificate {path}')
    except FileNotFoundError:
        pass


def is_windows():
    return os.name == 'nt'


def detect_smctl_path(user_provided_smctl_path):
    if user_provided_smctl_path is not None:
        return pathlib.Path(user_provided_smctl_path)
    elif is_windows():
        program_files = os.getenv('ProgramFiles')
        if program_files is None:
            program_files = 'C:\\Program Files'
        return pathlib.Path(program_files).joinpath(
            'DigiCert', 'DigiCert One Signing Manager Tools', 'smctl.exe')
    else:
        return pathlib.Path('/opt/digicert/smtools/smctl')


def get_signtool_path(user_provided_signtool_path):
    if user_provided_signtool_path is not None:
        return user_provided_signtool_path
    else:
        # Assume it's in PATH
        return 'signtool'


def log_subprocess_run(logger, command):
    command_to_log = list(map(lambda x: str(x), command))
    logger.info('Running: ' + shlex.join(command_to_log))


def run_command(logger, short_cmdline, command, env=None, timeout=None):
    if env is not None:
        env = {**os.environ, **env}
    log_subprocess_run(logger, command)
    try:
        return subprocess.run(command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                              text=True, env=env, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.error("Command '%s' did not finish within %s seconds", short_cmdline, timeout)
        raise CommandTimeoutException()
    except OSError as e:
        logger.error("Unable to run '%s': %s", short_cmdline, e)
        raise AbortException()


def invoke_command(logger, pre_message, success_message, error_message, short_cmdline,
                   print_output_on_success, command, env=None, timeout=None, check=True):
    """
    Runs `command`, logging what it does. Returns the command's combined
    stdout/stderr on success.

    On a non-zero exit code the command's output is logged together with
    `error_message`. If `check` is true an AbortException is then raised,
    otherwise None is returned so that the caller can carry on.
    """
    logger.info(pre_message)
    proc = run_command(logger, short_cmdline, command, env=env, timeout=timeout)
    if proc.returncode == 0:
        if print_output_on_success:
            logger.info(proc.stdout)
        if success_message is not None:
            logger.info(success_message)
        return proc.stdout
    else:
        logger.info(
            "%s: command exited with code %d. Output from command '%s' is as follows:\n%s",
            error_message, proc.returncode, short_cmdline, proc.stdout)
        if check:
            raise AbortException()
        return None
