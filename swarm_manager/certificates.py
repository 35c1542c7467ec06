"""Self-signed certificate bundle generation and inspection.

The bundle is four artifacts distributed as swarm secrets (named like the
files) plus a non-secret `ca.pem` copy for local tooling.
"""

import secrets as secrets_module
import shutil
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from swarm_manager.exceptions import CertificateError
from swarm_manager.logging_config import get_logger

logger = get_logger(__name__)

PFX_FILE = "aspnetapp.pfx"
CA_FILE = "ca.crt"
KEY_FILE = "cert.key"
CERT_FILE = "cert.pem"
CA_PEM_FILE = "ca.pem"

# Secrets are rotated in this order
ARTIFACTS = (PFX_FILE, CA_FILE, KEY_FILE, CERT_FILE)

PRIVATE_MODE = 0o600
PUBLIC_MODE = 0o644


def generate_password(length: int = 32) -> str:
    """Generate a random alphanumeric password for the PKCS#12 export.

    Args:
        length: Length of the password (default: 32)

    Returns:
        A random password string
    """
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets_module.choice(alphabet) for _ in range(length))


def build_subject(domain: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "State"),
            x509.NameAttribute(NameOID.LOCALITY_NAME, "City"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Organization"),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Unit"),
            x509.NameAttribute(NameOID.COMMON_NAME, domain),
        ]
    )


@dataclass
class CertificateBundle:
    """A freshly generated bundle on disk.

    Attributes:
        directory: Directory holding the artifacts
        domain: Subject common name
        password: PKCS#12 export password
        not_valid_before: Start of the validity window (UTC)
        not_valid_after: End of the validity window (UTC)
    """

    directory: Path
    domain: str
    password: str
    not_valid_before: datetime
    not_valid_after: datetime

    def path(self, name: str) -> Path:
        return self.directory / name


def _write(path: Path, data: bytes, mode: int) -> None:
    path.write_bytes(data)
    path.chmod(mode)


def _render_bundle(
    directory: Path, domain: str, validity_days: int, password: str, key_size: int
) -> tuple[datetime, datetime]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    subject = build_subject(domain)
    now = datetime.now(timezone.utc)
    not_after = now + timedelta(days=validity_days)

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .sign(key, hashes.SHA256())
    )

    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    pfx = pkcs12.serialize_key_and_certificates(
        name=domain.encode(),
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode()),
    )

    _write(directory / KEY_FILE, key_pem, PRIVATE_MODE)
    _write(directory / CERT_FILE, cert_pem, PUBLIC_MODE)
    _write(directory / CA_FILE, cert_pem, PUBLIC_MODE)
    _write(directory / CA_PEM_FILE, cert_pem, PUBLIC_MODE)
    _write(directory / PFX_FILE, pfx, PRIVATE_MODE)
    return now, not_after


def generate_bundle(
    directory: str | Path,
    domain: str,
    validity_days: int,
    password: str | None = None,
    key_size: int = 2048,
) -> CertificateBundle:
    """Generate a new self-signed bundle and swap it into `directory`.

    The artifacts are written to a staging directory next to the target and
    only replace the existing ones once all of them were written.

    Args:
        directory: Target certificate directory
        domain: Subject CN and DNS SAN
        validity_days: Length of the validity window
        password: PKCS#12 password (a fresh one is generated if omitted)
        key_size: RSA key size in bits

    Returns:
        The generated CertificateBundle

    Raises:
        CertificateError: If generation or the swap fails
    """
    directory = Path(directory)
    password = password or generate_password()
    staging = directory.parent / f".{directory.name}.staging"
    previous = directory.parent / f".{directory.name}.previous"

    logger.info(f"Generating certificate for {domain} valid for {validity_days} days")
    try:
        directory.parent.mkdir(parents=True, exist_ok=True)
        shutil.rmtree(staging, ignore_errors=True)
        staging.mkdir(mode=0o700)
        not_before, not_after = _render_bundle(staging, domain, validity_days, password, key_size)

        shutil.rmtree(previous, ignore_errors=True)
        if directory.exists():
            directory.rename(previous)
        staging.rename(directory)
        shutil.rmtree(previous, ignore_errors=True)
    except (OSError, ValueError) as e:
        shutil.rmtree(staging, ignore_errors=True)
        if previous.exists() and not directory.exists():
            previous.rename(directory)
        logger.error(f"Certificate generation failed: {e}")
        raise CertificateError("Failed to generate certificate bundle", str(e))

    directory.chmod(0o755)
    logger.info(f"Certificate bundle written to {directory} (expires {not_after:%Y-%m-%d})")
    return CertificateBundle(
        directory=directory,
        domain=domain,
        password=password,
        not_valid_before=not_before,
        not_valid_after=not_after,
    )


def load_certificate(path: str | Path) -> x509.Certificate:
    """Load a PEM certificate.

    Raises:
        CertificateError: If the file is missing or not a PEM certificate
    """
    try:
        return x509.load_pem_x509_certificate(Path(path).read_bytes())
    except (OSError, ValueError) as e:
        raise CertificateError(f"Cannot read certificate {path}", str(e))


def days_until_expiry(cert: x509.Certificate, now: datetime | None = None) -> int:
    """Whole days left before `cert` expires (negative once expired)."""
    now = now or datetime.now(timezone.utc)
    return (cert.not_valid_after_utc - now).days


def _public_der(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


@dataclass
class ArtifactStatus:
    name: str
    present: bool
    days_left: int | None = None
    problem: str | None = None

    @property
    def ok(self) -> bool:
        return self.present and self.problem is None


def inspect_bundle(
    directory: str | Path, threshold_days: int = 30, now: datetime | None = None
) -> list[ArtifactStatus]:
    """Inspect each bundle artifact.

    Certificates are parsed and checked against the renewal threshold, the key
    must parse and match `cert.pem`, and the export must be non-empty (its
    password is held in the secret store, not locally).
    """
    directory = Path(directory)
    report = []
    cert_public = None

    for name in (CERT_FILE, CA_FILE):
        path = directory / name
        if not path.is_file():
            report.append(ArtifactStatus(name, present=False, problem="missing"))
            continue
        try:
            cert = load_certificate(path)
        except CertificateError:
            report.append(ArtifactStatus(name, present=True, problem="unparseable"))
            continue
        days = days_until_expiry(cert, now)
        problem = None
        if days <= threshold_days:
            problem = f"expires in {days} days (threshold {threshold_days})"
        if name == CERT_FILE:
            cert_public = _public_der(cert.public_key())
        report.append(ArtifactStatus(name, present=True, days_left=days, problem=problem))

    key_path = directory / KEY_FILE
    if not key_path.is_file():
        report.append(ArtifactStatus(KEY_FILE, present=False, problem="missing"))
    else:
        try:
            key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
        except (OSError, ValueError, TypeError):
            report.append(ArtifactStatus(KEY_FILE, present=True, problem="unparseable"))
        else:
            problem = None
            if cert_public is not None and _public_der(key.public_key()) != cert_public:
                problem = f"does not match {CERT_FILE}"
            report.append(ArtifactStatus(KEY_FILE, present=True, problem=problem))

    pfx_path = directory / PFX_FILE
    if not pfx_path.is_file():
        report.append(ArtifactStatus(PFX_FILE, present=False, problem="missing"))
    elif pfx_path.stat().st_size == 0:
        report.append(ArtifactStatus(PFX_FILE, present=True, problem="empty"))
    else:
        report.append(ArtifactStatus(PFX_FILE, present=True))

    order = {name: i for i, name in enumerate(ARTIFACTS)}
    return sorted(report, key=lambda s: order[s.name])


def needs_renewal(
    directory: str | Path,
    threshold_days: int = 30,
    force: bool = False,
    now: datetime | None = None,
) -> list[str]:
    """Return the reasons the bundle must be regenerated (empty if it is valid)."""
    if force:
        return ["forced renewal"]
    return [
        f"{status.name}: {status.problem}"
        for status in inspect_bundle(directory, threshold_days, now)
        if not status.ok
    ]
