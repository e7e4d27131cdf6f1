from dataclasses import dataclass
from digicert_codesigning_integration import utils
import envparse
import requests
import tempfile
import logging
import sys
import os

DEFAULT_SMTOOLS_DOWNLOAD_URL = (
    'https://one.digicert.com/signingmanager/api-ui/v1/releases/smtools-windows-x64.msi/download'
)
INSTALLER_FILE_NAME = 'smtools-windows-x64.msi'
INSTALLER_LOG_FILE_NAME = 'smtools-windows-x64.log'
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

config_schema = dict(
    SM_API_KEY=dict(cast=str, default=None),

    SMCTL_PATH=dict(cast=str, default=None),
    SMTOOLS_DOWNLOAD_URL=dict(cast=str, default=DEFAULT_SMTOOLS_DOWNLOAD_URL),
    INSTALLER_LOG_PATH=dict(cast=str, default=None),
    STRICT=dict(cast=bool, default=False),
    DOWNLOAD_TIMEOUT=dict(cast=float, default=300.0),
    INSTALLER_TIMEOUT=dict(cast=float, default=1800.0),
)


@dataclass(frozen=True)
class SmctlInstallConfig:
    sm_api_key: str = None

    smctl_path: str = None
    smtools_download_url: str = DEFAULT_SMTOOLS_DOWNLOAD_URL
    installer_log_path: str = None
    strict: bool = False
    download_timeout: float = 300.0
    installer_timeout: float = 1800.0

    @classmethod
    def from_env(cls):
        return cls(**utils.create_dataclass_inputs_from_env(config_schema))


class SmctlInstaller:
    """
    Makes sure that the DigiCert Signing Manager tools are installed,
    downloading and silently installing the MSI package if `smctl`
    cannot be found. The installer's exit code is reported, and only
    enforced in strict mode.
    """

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def smctl_path(self):
        return utils.detect_smctl_path(self.config.smctl_path)

    def ensure_installed(self):
        smctl_path = self.smctl_path()
        if smctl_path.exists():
            self.logger.info(f'Found smctl at {smctl_path}: skipping installation.')
            return

        self.logger.info(f'smctl not found at {smctl_path}: installing DigiCert Signing Manager tools.')
        if not utils.is_windows():
            self.logger.error(
                'Automatic installation of the DigiCert Signing Manager tools is only '
                'supported on Windows. Please install them manually or set SMCTL_PATH.')
            raise utils.AbortException()

        with tempfile.TemporaryDirectory() as temp_dir:
            installer_path = os.path.join(temp_dir, INSTALLER_FILE_NAME)
            self._download_installer(installer_path)
            self._run_installer(installer_path)

    def _get_installer_log_path(self):
        if self.config.installer_log_path is not None:
            return self.config.installer_log_path
        else:
            return os.path.join(tempfile.gettempdir(), INSTALLER_LOG_FILE_NAME)

    def _download_installer(self, installer_path):
        url = self.config.smtools_download_url
        self.logger.info(f'Downloading {url}')
        try:
            with requests.get(url, headers={'x-api-key': self.config.sm_api_key},
                              stream=True, timeout=self.config.download_timeout) as response:
                if not response.ok:
                    self.logger.error(
                        'Error downloading DigiCert Signing Manager tools: server responded '
                        'with HTTP status %d', response.status_code)
                    raise utils.AbortException()
                with open(installer_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except requests.Timeout:
            self.logger.error(
                'Error downloading DigiCert Signing Manager tools: no response within %s seconds',
                self.config.download_timeout)
            raise utils.CommandTimeoutException()
        except requests.RequestException as e:
            self.logger.error('Error downloading DigiCert Signing Manager tools: %s', e)
            raise utils.AbortException()

        if not os.path.isfile(installer_path) or os.path.getsize(installer_path) == 0:
            self.logger.error(f'Download did not produce an installer at {installer_path}')
            raise utils.AbortException()
        self.logger.info(f'Downloaded installer to {installer_path}')

    def _run_installer(self, installer_path):
        log_path = self._get_installer_log_path()
        command = [
            'msiexec',
            '/i',
            installer_path,
            '/quiet',
            '/qn',
            '/log',
            log_path
        ]

        self.logger.info('Installing DigiCert Signing Manager tools.')
        proc = utils.run_command(self.logger, 'msiexec', command,
                                 timeout=self.config.installer_timeout)
        self.logger.info(f'Installer exited with code {proc.returncode}. Log file: {log_path}')
        if proc.returncode != 0:
            if self.config.strict:
                self.logger.error('Error installing DigiCert Signing Manager tools.')
                raise utils.AbortException()
            self.logger.warning(
                'Installer reported a failure; continuing because strict mode is disabled.')


class SmctlInstallCommand:
    def __init__(self, logger, config: SmctlInstallConfig):
        utils.check_required_config_options([
            ('SM_API_KEY', config.sm_api_key),
        ])

        self.logger = logger
        self.config = config

    def run(self):
        SmctlInstaller(self.logger, self.config).ensure_installed()


def main():
    try:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)-8s %(message)s')
        config = SmctlInstallConfig.from_env()
        command = SmctlInstallCommand(logging.getLogger(), config)
    except envparse.ConfigurationError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    try:
        command.run()
    except utils.AbortException:
        sys.exit(1)


if __name__ == '__main__':
    main()
