# Copyright 2023 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Decides whether an existing certificate chain is due for renewal."""
import calendar
import datetime
import enum
import logging
import pathlib

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from . import errors
from . import keystore

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_THRESHOLD_MONTHS = 2


class ExpiryDecision(enum.Enum):
    """Outcome of the expiry check."""
    RENEWAL_NOT_NEEDED = "renewal_not_needed"
    RENEWAL_REQUIRED = "renewal_required"


def add_months(moment: datetime.datetime, months: int) -> datetime.datetime:
    """Adds calendar months to `moment`, clamping the day to the length of the resulting month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def load_leaf_certificate(chain_path) -> x509.Certificate:
    """
    Loads the first (leaf) certificate of a PEM chain file.

    Raises:
        simple_acme_renew.errors.InvalidCertificate: When the file cannot be read or holds no parsable certificate.
    """
    try:
        return x509.load_pem_x509_certificate(pathlib.Path(chain_path).read_bytes())
    except (OSError, ValueError) as exc:
        raise errors.InvalidCertificate(f"Unable to read the certificate chain at '{chain_path}': {exc}") from exc


def read_expiry(chain_path) -> datetime.datetime:
    """Returns the timezone aware expiry timestamp of the leaf certificate in `chain_path`."""
    return load_leaf_certificate(chain_path).not_valid_after_utc


def matches_key(certificate: x509.Certificate, domain_key_pem: bytes) -> bool:
    """Checks whether the certificate's public key belongs to the given private key."""
    private_key = keystore.load_private_key(domain_key_pem)
    return certificate.public_key().public_bytes(
        Encoding.DER, PublicFormat.SubjectPublicKeyInfo
    ) == private_key.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)


def check_expiry(
        chain_path,
        domain_key_pem: bytes,
        threshold_months: int = DEFAULT_RENEWAL_THRESHOLD_MONTHS,
        now: datetime.datetime = None
) -> ExpiryDecision:
    """
    Compares the expiry of an existing certificate chain against `now + threshold_months`.

    Args:
        chain_path (str): The `chained.pem` path of the domain variant.
        domain_key_pem (bytes): The PEM encoded domain key the certificate is served with.
        threshold_months (int): How many months before expiry a certificate is renewed.
        now (datetime.datetime): The current time. Defaults to the current UTC time.

    Returns:
        ExpiryDecision: `RENEWAL_NOT_NEEDED` when the certificate expires after the threshold, `RENEWAL_REQUIRED`
            when it expires on or before it or when no chain file exists.

    Raises:
        simple_acme_renew.errors.InvalidCertificate: When an existing chain file cannot be parsed or was issued for
            another key than `domain_key_pem`.
    """
    chain_path = pathlib.Path(chain_path)
    if not chain_path.exists():
        logger.info("No previous certificate at %s.", chain_path)
        return ExpiryDecision.RENEWAL_REQUIRED

    logger.info("Previous certificate exists: %s.", chain_path)
    certificate = load_leaf_certificate(chain_path)

    if not matches_key(certificate, domain_key_pem):
        raise errors.InvalidCertificate(
            f"Certificate at '{chain_path}' was not issued for the current domain key. Refusing to replace it."
        )

    now = now or datetime.datetime.now(datetime.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    expiry = certificate.not_valid_after_utc
    if add_months(now, threshold_months) < expiry:
        logger.info("Certificate expires at: %s. No need to renew.", expiry)
        return ExpiryDecision.RENEWAL_NOT_NEEDED

    logger.info("Certificate expires at: %s. Renewal required.", expiry)
    return ExpiryDecision.RENEWAL_REQUIRED
