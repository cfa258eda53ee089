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
Thin wrappers around `acme.client.ClientV2` exposing only what the renewal workflow needs: accounts, orders,
authorizations, DNS-01 challenges and finalization. Every network call is delegated to the `acme` package.
"""
import datetime
import logging
import time

import josepy as jose
from acme import challenges
from acme import client
from acme import crypto_util
from acme import errors as acme_errors
from acme import messages
from cryptography.hazmat.primitives.asymmetric import rsa, ec
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, NoEncryption

from . import errors
from . import keystore

logger = logging.getLogger(__name__)

LETS_ENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"
USER_AGENT = "simple_acme_renew/1.0.0"
STATUS_UNKNOWN = "unknown"


def directory_url(staging: bool) -> str:
    """Returns the Let's Encrypt staging or production directory URL."""
    return LETS_ENCRYPT_STAGING if staging else LETS_ENCRYPT_PRODUCTION


def _jwk_from_key(key) -> tuple:
    """Wraps a cryptography private key as a JWK and picks its signing algorithm."""
    if isinstance(key, rsa.RSAPrivateKey):
        return jose.JWKRSA(key=key), jose.RS256
    if isinstance(key, ec.EllipticCurvePrivateKey):
        alg = {256: jose.ES256, 384: jose.ES384, 521: jose.ES512}.get(key.curve.key_size, jose.ES256)
        return jose.JWKEC(key=key), alg
    raise errors.InvalidPrivateKey(f"Unsupported account key type '{type(key).__name__}'.")


class Directory:
    """An ACME directory endpoint able to register new accounts or load existing ones."""

    def __init__(self, url: str, verify_ssl: bool = True, sleep=time.sleep) -> None:
        """
        Args:
            url (str): The ACME directory URL.
            verify_ssl (bool): Verify the SSL certificate of the ACME server when making requests.
            sleep (callable): Function used to pause while waiting for the CA.
        """
        self.url = url
        self.verify_ssl = verify_ssl
        self.sleep = sleep

    def _connect(self, account_key: jose.JWK, alg) -> client.ClientV2:
        """Opens a signed connection to the directory with the given account key."""
        net = client.ClientNetwork(account_key, alg=alg, user_agent=USER_AGENT, verify_ssl=self.verify_ssl)
        directory = messages.Directory.from_json(net.get(self.url).json())
        return client.ClientV2(directory, net=net)

    def register_account(self, contacts: list) -> "Account":
        """
        Registers a new account with a freshly generated RSA2048 key. By running this method, you are agreeing to the
        ACME server's terms of use.

        Args:
            contacts (list): Contact URIs, e.g. `["mailto:me@example.com"]`.

        Returns:
            Account: The registered account.
        """
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        account_key, alg = _jwk_from_key(key)
        acme = self._connect(account_key, alg)

        registration = messages.NewRegistration(contact=tuple(contacts), terms_of_service_agreed=True)
        resource = acme.new_account(registration)
        logger.info("Registered new ACME account %s", resource.uri)
        return Account(acme, key, account_key, resource, sleep=self.sleep)

    def load_account(self, pem: bytes, contacts: list) -> "Account":
        """
        Looks up the existing account belonging to a PEM encoded account key.

        Args:
            pem (bytes): The PEM encoded account private key.
            contacts (list): Contact URIs of the account.

        Returns:
            Account: The existing account.
        """
        key = keystore.load_private_key(pem, keystore.ACCOUNT_KEY_FILE)
        account_key, alg = _jwk_from_key(key)
        acme = self._connect(account_key, alg)

        registration = messages.NewRegistration(
            contact=tuple(contacts), terms_of_service_agreed=True, only_return_existing=True
        )
        try:
            resource = acme.new_account(registration)
        except acme_errors.ConflictError as exc:
            # The server answers with the location of the account that already exists for this key
            resource = acme.query_registration(messages.RegistrationResource(uri=exc.location, body=messages.Registration()))
        return Account(acme, key, account_key, resource, sleep=self.sleep)


class Account:
    """A registered ACME account able to place orders."""

    def __init__(self, acme: client.ClientV2, key, account_key: jose.JWK, resource, sleep=time.sleep) -> None:
        self.acme = acme
        self.key = key
        self.account_key = account_key
        self.resource = resource
        self.sleep = sleep

    def private_key_pem(self) -> bytes:
        """Returns the PEM encoded account private key."""
        return self.key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=NoEncryption()
        )

    def new_order(self, name: str, alt_names: list, domain_key_pem: bytes) -> "Order":
        """
        Places a new order. The `acme` package derives the order identifiers from a CSR, so the CSR is built here from
        the domain key and reused at finalization.

        Args:
            name (str): The primary name, e.g. `example.com` or `*.example.com`.
            alt_names (list): Additional names for the certificate.
            domain_key_pem (bytes): The PEM encoded domain key.

        Returns:
            Order: The newly created order.
        """
        csr_pem = crypto_util.make_csr(domain_key_pem, [name] + list(alt_names))
        resource = self.acme.new_order(csr_pem)
        logger.info("Created order %s for %s", resource.uri, name)
        return Order(self, resource)


class Order:
    """An in-flight ACME order."""

    def __init__(self, account: Account, resource: messages.OrderResource) -> None:
        self.account = account
        self.resource = resource

    def refresh(self) -> None:
        """Fetches the current state of every authorization of the order from the server."""
        authorizations = [self.account.acme.poll(authzr)[0] for authzr in self.resource.authorizations]
        self.resource = self.resource.update(authorizations=authorizations)

    def authorizations(self) -> list:
        """Returns the authorizations of the order, reading their status from the last refresh."""
        return [Authorization(self, index) for index in range(len(self.resource.authorizations))]

    def confirm_validations(self):
        """
        Checks whether every authorization of the order is already valid.

        Returns:
            FinalizableOrder: The order ready for CSR submission, or `None` while validation is outstanding.
        """
        authorizations = self.resource.authorizations
        if authorizations and all(authzr.body.status == messages.STATUS_VALID for authzr in authorizations):
            return FinalizableOrder(self.account, self.resource)
        return None


class Authorization:
    """One authorization of an order. Its state always reflects the owning order's last refresh."""

    def __init__(self, order: Order, index: int) -> None:
        self.order = order
        self.index = index

    @property
    def resource(self) -> messages.AuthorizationResource:
        """The authorization resource as of the last order refresh."""
        return self.order.resource.authorizations[self.index]

    @property
    def domain(self) -> str:
        """The identifier value this authorization proves control of."""
        return self.resource.body.identifier.value

    @property
    def status(self) -> str:
        """The authorization status name (`pending`, `valid`, `invalid`, ...), or `unknown` when absent."""
        status = self.resource.body.status
        return status.name if status is not None else STATUS_UNKNOWN

    def needs_challenge(self) -> bool:
        """Whether a challenge must still be completed for this authorization."""
        return self.resource.body.status != messages.STATUS_VALID

    def dns_challenge(self):
        """
        Returns:
            Challenge: The DNS-01 challenge of this authorization, or `None` when the server does not offer one.
        """
        for challb in self.resource.body.challenges:
            if isinstance(challb.chall, challenges.DNS01):
                return Challenge(self, challb)
        return None


class Challenge:
    """A DNS-01 challenge."""

    def __init__(self, authorization: Authorization, challb: messages.ChallengeBody) -> None:
        self.authorization = authorization
        self.challb = challb

    @property
    def account(self) -> Account:
        """The account the challenge is answered with."""
        return self.authorization.order.account

    def proof(self) -> str:
        """Returns the value to publish in the `_acme-challenge` TXT record."""
        return self.challb.validation(self.account.account_key)

    def validate(self, pause: float) -> str:
        """
        Tells the CA the proof is published, waits `pause` seconds and reads the authorization status back.

        Returns:
            str: The authorization status after the pause.

        Raises:
            simple_acme_renew.errors.OrderError: When the CA rejects the challenge answer.
        """
        try:
            self.account.acme.answer_challenge(self.challb, self.challb.response(self.account.account_key))
        except (acme_errors.Error, messages.Error) as exc:
            raise errors.OrderError(f"Challenge answer for {self.authorization.domain} rejected: {exc}") from exc

        self.account.sleep(pause)
        self.authorization.order.refresh()
        return self.authorization.status


class FinalizableOrder:
    """An order whose authorizations are all valid."""

    def __init__(self, account: Account, resource: messages.OrderResource) -> None:
        self.account = account
        self.resource = resource

    def finalize(self, timeout: float) -> "CertOrder":
        """
        Submits the CSR and waits until the CA issues the certificate.

        Args:
            timeout (float): The amount of time (in seconds) to wait for issuance.

        Returns:
            CertOrder: The order holding the issued certificate chain.
        """
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=timeout)
        resource = self.account.acme.finalize_order(self.resource, deadline)
        return CertOrder(resource)


class CertOrder:
    """A finalized order."""

    def __init__(self, resource: messages.OrderResource) -> None:
        self.resource = resource

    def download_certificate(self) -> str:
        """Returns the PEM encoded full certificate chain."""
        return self.resource.fullchain_pem
