from dataclasses import dataclass, replace
from typing import List
from digicert_codesigning_integration import smctl_install_command
from digicert_codesigning_integration import smctl_output
from digicert_codesigning_integration import utils
import envparse
import tempfile
import logging
import sys
import os

config_schema = dict(
    SM_API_KEY=dict(cast=str, default=None),
    SM_CLIENT_CERT_FILE_B64=dict(cast=str, default=None),
    SM_CLIENT_CERT_PASSWORD=dict(cast=str, default=None),
    SSM=dict(cast=str, default=None),
    SM_HOST=dict(cast=str, default=None),

    INPUT_PATHS=dict(cast=str, default=''),
    INPUT_PATHS_SEPARATOR=dict(cast=str, default=';'),

    CLIENT_CERT_PATH=dict(cast=str, default=None),
    SMCTL_PATH=dict(cast=str, default=None),
    SIGNTOOL_PATH=dict(cast=str, default=None),
    SMTOOLS_DOWNLOAD_URL=dict(
        cast=str, default=smctl_install_command.DEFAULT_SMTOOLS_DOWNLOAD_URL),
    INSTALLER_LOG_PATH=dict(cast=str, default=None),
    STRICT=dict(cast=bool, default=False),
    COMMAND_TIMEOUT=dict(cast=float, default=900.0),
    INSTALLER_TIMEOUT=dict(cast=float, default=1800.0),
    DOWNLOAD_TIMEOUT=dict(cast=float, default=300.0),
)


@dataclass(frozen=True)
class SmctlSignConfig:
    sm_api_key: str = None
    sm_client_cert_file_b64: str = None
    sm_client_cert_password: str = None
    ssm: str = None
    sm_host: str = None

    input_paths: str = ''
    input_paths_separator: str = ';'

    client_cert_path: str = None
    smctl_path: str = None
    signtool_path: str = None
    smtools_download_url: str = smctl_install_command.DEFAULT_SMTOOLS_DOWNLOAD_URL
    installer_log_path: str = None
    strict: bool = False
    command_timeout: float = 900.0
    installer_timeout: float = 1800.0
    download_timeout: float = 300.0

    @classmethod
    def from_env(cls):
        return cls(**utils.create_dataclass_inputs_from_env(config_schema))


@dataclass
class SigningResult:
    path: str
    signed: bool = False
    verified: bool = False


class SmctlSignCommand:
    def __init__(self, logger, config: SmctlSignConfig):
        # All problems are reported in one error, credentials first.
        problems = []
        try:
            utils.check_required_config_options([
                ('SM_API_KEY', config.sm_api_key),
                ('SM_CLIENT_CERT_FILE_B64', config.sm_client_cert_file_b64),
                ('SM_CLIENT_CERT_PASSWORD', config.sm_client_cert_password),
                ('SSM', config.ssm),
            ])
        except envparse.ConfigurationError as e:
            problems.append(str(e))

        if config.sm_client_cert_file_b64:
            try:
                utils.decode_client_cert(config.sm_client_cert_file_b64)
            except envparse.ConfigurationError as e:
                problems.append(str(e))

        self.input_paths = utils.split_input_paths(
            config.input_paths, config.input_paths_separator)
        if len(self.input_paths) == 0:
            problems.append(
                'No files to sign: pass a list of paths separated by '
                f"'{config.input_paths_separator}' as the first argument or via INPUT_PATHS.")

        if len(problems) > 0:
            raise envparse.ConfigurationError(' '.join(problems))

        self.logger = logger
        self.config = config

    def run(self) -> List[SigningResult]:
        self._create_temp_dir()
        try:
            self._stage_client_cert()
            self._ensure_smctl_installed()
            self._sync_certificates()
            self._select_certificate()
            self._select_keypair()
            self._sign_and_verify_files()
            self._log_summary()
            return self.results
        finally:
            self._remove_client_cert()
            self._delete_temp_dir()

    def _create_temp_dir(self):
        self.temp_dir = tempfile.TemporaryDirectory()

    def _delete_temp_dir(self):
        self.temp_dir.cleanup()

    def _get_client_cert_path(self):
        if self.config.client_cert_path is not None:
            return self.config.client_cert_path
        else:
            return os.path.join(self.temp_dir.name, 'client_cert.p12')

    def _stage_client_cert(self):
        self.client_cert_path = utils.stage_client_cert(
            self.logger,
            self._get_client_cert_path(),
            self.config.sm_client_cert_file_b64)

    def _remove_client_cert(self):
        if hasattr(self, 'client_cert_path'):
            utils.remove_client_cert(self.logger, self.client_cert_path)

    def _get_smctl_env(self):
        env = {
            'SM_API_KEY': self.config.sm_api_key,
            'SM_CLIENT_CERT_FILE': str(self.client_cert_path),
            'SM_CLIENT_CERT_PASSWORD': self.config.sm_client_cert_password,
            'SSM': self.config.ssm,
        }
        if self.config.sm_host is not None:
            env['SM_HOST'] = self.config.sm_host
        return env

    def _ensure_smctl_installed(self):
        smctl_install_command.SmctlInstaller(self.logger, self.config).ensure_installed()
        self.smctl_path = utils.detect_smctl_path(self.config.smctl_path)

    def _sync_certificates(self):
        utils.invoke_command(
            self.logger,
            'Synchronizing certificates to the local certificate store.',
            'Successfully synchronized certificates.',
            'Error synchronizing certificates',
            'smctl windows certsync',
            print_output_on_success=False,
            command=[self.smctl_path, 'windows', 'certsync'],
            env=self._get_smctl_env(),
            timeout=self.config.command_timeout,
            check=self.config.strict
        )

    def _select_certificate(self):
        output = utils.invoke_command(
            self.logger,
            'Listing certificates.',
            None,
            'Error listing certificates',
            'smctl cert ls',
            print_output_on_success=True,
            command=[self.smctl_path, 'cert', 'ls'],
            env=self._get_smctl_env(),
            timeout=self.config.command_timeout
        )

        certificates = smctl_output.parse_active_certificates(output)
        self.certificate = smctl_output.select_certificate(certificates)
        if self.certificate is None:
            self.logger.error('No certificate with status %s found.', smctl_output.ACTIVE_STATUS)
            raise utils.AbortException()
        self.logger.info(
            f'Using certificate {self.certificate.alias} (ID {self.certificate.id}).')

    def _select_keypair(self):
        output = utils.invoke_command(
            self.logger,
            'Listing keypairs.',
            None,
            'Error listing keypairs',
            'smctl keypair ls',
            print_output_on_success=True,
            command=[self.smctl_path, 'keypair', 'ls'],
            env=self._get_smctl_env(),
            timeout=self.config.command_timeout
        )

        keypairs = smctl_output.parse_keypairs(output)
        self.keypair = smctl_output.select_keypair(keypairs, self.certificate)
        if self.keypair is None:
            self.logger.error(
                f'No keypair found for certificate {self.certificate.alias} '
                f'(ID {self.certificate.id}).')
            raise utils.AbortException()
        self.logger.info(f'Using keypair alias {self.keypair.alias}.')

    def _sign_and_verify_files(self):
        self.results = []
        for input_path in self.input_paths:
            result = SigningResult(path=input_path)
            self.results.append(result)
            result.signed = self._invoke_smctl_sign(input_path)
            result.verified = self._invoke_signtool_verify(input_path)

    def _invoke_smctl_sign(self, input_path) -> bool:
        output = utils.invoke_command(
            self.logger,
            f'Signing with smctl: {input_path}',
            f"Successfully signed '{input_path}'.",
            f"Error signing '{input_path}'",
            'smctl sign',
            print_output_on_success=True,
            command=[
                self.smctl_path,
                'sign',
                '--keypair-alias=' + self.keypair.alias,
                '--input',
                input_path
            ],
            env=self._get_smctl_env(),
            timeout=self.config.command_timeout,
            check=self.config.strict
        )
        return output is not None

    def _invoke_signtool_verify(self, input_path) -> bool:
        signtool_path = utils.get_signtool_path(self.config.signtool_path)

        output = utils.invoke_command(
            self.logger,
            f'Verifying with signtool: {input_path}',
            f"Successfully verified '{input_path}'.",
            f"Error verifying '{input_path}'",
            'signtool',
            print_output_on_success=True,
            command=[
                signtool_path,
                'verify',
                '/v',
                '/pa',
                input_path
            ],
            timeout=self.config.command_timeout,
            check=self.config.strict
        )
        return output is not None

    def _log_summary(self):
        failed = [r for r in self.results if not (r.signed and r.verified)]
        if len(failed) == 0:
            self.logger.info(f'Successfully signed and verified {len(self.results)} file(s).')
            return

        self.logger.warning(
            '%d of %d file(s) could not be signed or verified:',
            len(failed), len(self.results))
        for result in failed:
            if not result.signed:
                self.logger.warning(f"  '{result.path}': signing failed")
            else:
                self.logger.warning(f"  '{result.path}': verification failed")


def main():
    try:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)-8s %(message)s')
        config = SmctlSignConfig.from_env()
        if len(sys.argv) > 1:
            config = replace(config, input_paths=sys.argv[1])
        command = SmctlSignCommand(logging.getLogger(), config)
    except envparse.ConfigurationError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    try:
        command.run()
    except utils.AbortException:
        sys.exit(1)


if __name__ == '__main__':
    main()
