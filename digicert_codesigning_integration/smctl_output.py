"""
Parsers for the text tables printed by `smctl cert ls` and `smctl keypair ls`.

smctl has no machine-readable output mode for these listings, so rows are
recognized by position. If DigiCert changes the column layout these parsers
stop matching anything, which surfaces as a selection error rather than a
wrong choice.
"""
from dataclasses import dataclass
from typing import List, Optional
import re

ACTIVE_STATUS = 'ACTIVE'

CERTIFICATE_LINE_PATTERN = re.compile(
    r'^\s*(?P<id>[0-9a-fA-F]+(?:-[0-9a-fA-F]+)+)\s+(?P<alias>\S+)\s.*\b(?P<status>ACTIVE)\b')


@dataclass(frozen=True)
class CertificateRecord:
    id: str
    alias: str
    status: str


@dataclass(frozen=True)
class KeypairRecord:
    alias: str
    certificate_id: str


def parse_active_certificates(output: str) -> List[CertificateRecord]:
    result = []
    for line in output.splitlines():
        match = CERTIFICATE_LINE_PATTERN.match(line)
        if match is not None:
            result.append(CertificateRecord(
                id=match.group('id'),
                alias=match.group('alias'),
                status=match.group('status')))
    return result


def parse_keypairs(output: str) -> List[KeypairRecord]:
    result = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 3:
            continue
        result.append(KeypairRecord(alias=fields[2], certificate_id=fields[-1]))
    return result


def select_certificate(certificates: List[CertificateRecord]) -> Optional[CertificateRecord]:
    for certificate in certificates:
        if certificate.status == ACTIVE_STATUS:
            return certificate
    return None


def select_keypair(keypairs: List[KeypairRecord],
                   certificate: CertificateRecord) -> Optional[KeypairRecord]:
    for keypair in keypairs:
        if keypair.certificate_id == certificate.id:
            return keypair
    return None
