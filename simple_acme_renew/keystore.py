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
"""
Loads or generates the ACME account key and the per-domain certificate keys. Keys are persisted once and reused on
every later run; an existing key file is never replaced.
"""
import logging
import os
import pathlib
from typing import NamedTuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, NoEncryption

from . import errors

logger = logging.getLogger(__name__)

ACCOUNT_KEY_FILE = "account.key"
DOMAIN_KEY_FILE = "domain.key"
CHAIN_FILE = "chained.pem"
KEY_FILE_MODE = 0o600


class DomainPaths(NamedTuple):
    """File locations for one domain variant (apex or wildcard)."""
    directory: pathlib.Path
    key: pathlib.Path
    chain: pathlib.Path


def domain_dir_name(domain: str, wildcard: bool = False) -> str:
    """Returns the storage directory name of a domain variant, e.g. `example.com` or `wild_example.com`."""
    return f"wild_{domain}" if wildcard else domain


def domain_paths(data_dir, domain: str, wildcard: bool = False) -> DomainPaths:
    """
    Builds the file locations of a domain variant below `data_dir`.

    Args:
        data_dir (str): The directory holding all certificate material.
        domain (str): The domain name, without any wildcard prefix.
        wildcard (bool): Whether the paths are for the `*.domain` certificate.

    Returns:
        DomainPaths: The domain directory, its `domain.key` and its `chained.pem` paths.
    """
    directory = pathlib.Path(data_dir).joinpath(domain_dir_name(domain, wildcard))
    return DomainPaths(directory, directory.joinpath(DOMAIN_KEY_FILE), directory.joinpath(CHAIN_FILE))


def write_private_file(path, data: bytes) -> None:
    """Writes `data` to `path` so that only the owner can read or write it."""
    path = pathlib.Path(path)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, KEY_FILE_MODE)
    with os.fdopen(fd, "wb") as key_file:
        key_file.write(data)
    # The mode given to os.open() is filtered by the umask, so set it explicitly as well
    os.chmod(path, KEY_FILE_MODE)


def generate_domain_key() -> bytes:
    """
    Generates a new P-384 EC private key for a certificate.

    Returns:
        bytes: The PKCS#8 PEM encoded private key.
    """
    key = ec.generate_private_key(ec.SECP384R1())
    return key.private_bytes(encoding=Encoding.PEM, format=PrivateFormat.PKCS8, encryption_algorithm=NoEncryption())


def load_private_key(pem: bytes, path=None):
    """
    Parses a PEM encoded private key.

    Raises:
        simple_acme_renew.errors.InvalidPrivateKey: When the data is not a usable private key.
    """
    try:
        return serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as exc:
        raise errors.InvalidPrivateKey(f"Unable to load the private key at '{path}': {exc}") from exc


def load_or_generate_domain_key(paths: DomainPaths) -> bytes:
    """
    Loads the domain key of a domain variant, generating and persisting a new one only when the key file is missing.
    The domain directory is created when needed.

    Args:
        paths (DomainPaths): The paths of the domain variant.

    Returns:
        bytes: The PEM encoded domain key.

    Raises:
        simple_acme_renew.errors.InvalidPrivateKey: When an existing key file cannot be parsed. A corrupted key is
            never silently replaced.
    """
    paths.directory.mkdir(parents=True, exist_ok=True)

    if paths.key.exists():
        logger.info("Using previously known %s", paths.key)
        pem = paths.key.read_bytes()
        load_private_key(pem, paths.key)
        return pem

    logger.info("Generating a new %s", paths.key)
    pem = generate_domain_key()
    write_private_file(paths.key, pem)
    return pem


def load_or_create_account(directory, contacts: list, data_dir):
    """
    Loads the ACME account from `account.key` in `data_dir`, or registers a new account and persists its key.

    Args:
        directory (simple_acme_renew.acme_client.Directory): The ACME directory to register with or load from.
        contacts (list): Contact URIs for the account, e.g. `["mailto:me@example.com"]`.
        data_dir (str): The directory holding `account.key`.

    Returns:
        simple_acme_renew.acme_client.Account: The ready to use ACME account.

    Raises:
        simple_acme_renew.errors.InvalidPrivateKey: When the existing account key cannot be parsed.
    """
    data_dir = pathlib.Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    account_key_path = data_dir.joinpath(ACCOUNT_KEY_FILE)

    if account_key_path.exists():
        logger.info("Account key is present.")
        pem = account_key_path.read_bytes()
        load_private_key(pem, account_key_path)
        return directory.load_account(pem, contacts)

    logger.info("No account key present. Registering new account.")
    account = directory.register_account(contacts)
    write_private_file(account_key_path, account.private_key_pem())
    return account
