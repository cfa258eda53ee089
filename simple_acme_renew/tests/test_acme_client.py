# Copyright 2025 Jared Hendrickson
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
"""Tests the ACME wrappers against `acme.messages` objects and a mocked ClientV2."""
import unittest
from unittest import mock

import josepy as jose
from acme import challenges
from acme import errors as acme_errors
from acme import messages
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from simple_acme_renew import acme_client
from simple_acme_renew import errors
from simple_acme_renew import keystore
from simple_acme_renew.tests.tools import SleepRecorder, transient_problem

TOKEN = b"evaGxfADs6pSRb2LAv9IZf17Dt3juxGJ-PCt92wr-oA"
DIRECTORY_URL = "https://acme.test/directory"
DIRECTORY_JSON = {
    "newNonce": "https://acme.test/new-nonce",
    "newAccount": "https://acme.test/new-account",
    "newOrder": "https://acme.test/new-order",
}


def authorization_resource(status, offers_dns: bool = True) -> messages.AuthorizationResource:
    """Builds an authorization for example.com with a DNS-01 (or HTTP-01) challenge."""
    chall = challenges.DNS01(token=TOKEN) if offers_dns else challenges.HTTP01(token=TOKEN)
    challb = messages.ChallengeBody(chall=chall, uri="https://acme.test/chall/1", status=messages.STATUS_PENDING)
    body = messages.Authorization(
        identifier=messages.Identifier(typ=messages.IDENTIFIER_FQDN, value="example.com"),
        status=status,
        challenges=[challb],
    )
    return messages.AuthorizationResource(body=body, uri="https://acme.test/authz/1")


class TestAcmeClient(unittest.TestCase):
    """Tests order, authorization and challenge handling."""

    def setUp(self):
        self.key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.jwk = jose.JWKRSA(key=self.key)
        self.acme = mock.Mock()
        self.sleep = SleepRecorder()
        self.account = acme_client.Account(self.acme, self.key, self.jwk, resource=None, sleep=self.sleep)

    def order(self, status, offers_dns: bool = True) -> acme_client.Order:
        resource = messages.OrderResource(
            body=messages.Order(), uri="https://acme.test/order/1",
            authorizations=[authorization_resource(status, offers_dns)]
        )
        return acme_client.Order(self.account, resource)

    def test_directory_url(self):
        """Checks the staging and production directories."""
        self.assertEqual(acme_client.directory_url(True), acme_client.LETS_ENCRYPT_STAGING)
        self.assertEqual(acme_client.directory_url(False), acme_client.LETS_ENCRYPT_PRODUCTION)

    def test_jwk_from_key(self):
        """Checks the signing algorithm picked for RSA and EC keys."""
        self.assertEqual(acme_client._jwk_from_key(self.key)[1], jose.RS256)  # pylint: disable=protected-access
        ec_key = keystore.load_private_key(keystore.generate_domain_key())
        self.assertEqual(acme_client._jwk_from_key(ec_key)[1], jose.ES384)  # pylint: disable=protected-access

        with self.assertRaises(errors.InvalidPrivateKey):
            acme_client._jwk_from_key(ed25519.Ed25519PrivateKey.generate())  # pylint: disable=protected-access

    def test_private_key_pem(self):
        """Checks that the account key round trips through PEM."""
        pem = self.account.private_key_pem()

        self.assertEqual(keystore.load_private_key(pem).private_numbers(), self.key.private_numbers())

    def test_authorization_state(self):
        """Checks the status, domain and DNS-01 challenge of a pending authorization."""
        authorization = self.order(messages.STATUS_PENDING).authorizations()[0]

        self.assertEqual(authorization.status, "pending")
        self.assertEqual(authorization.domain, "example.com")
        self.assertTrue(authorization.needs_challenge())
        self.assertEqual(
            authorization.dns_challenge().proof(), challenges.DNS01(token=TOKEN).validation(self.jwk)
        )

    def test_authorization_without_dns_challenge(self):
        """Checks that no challenge is returned when DNS-01 is not offered."""
        authorization = self.order(messages.STATUS_PENDING, offers_dns=False).authorizations()[0]

        self.assertIsNone(authorization.dns_challenge())

    def test_confirm_validations(self):
        """Checks that only orders with every authorization valid can be finalized."""
        self.assertIsNone(self.order(messages.STATUS_PENDING).confirm_validations())
        self.assertIsInstance(
            self.order(messages.STATUS_VALID).confirm_validations(), acme_client.FinalizableOrder
        )

    def test_validate_answers_and_refreshes(self):
        """Checks that validation answers the challenge, pauses and reads the refreshed status."""
        order = self.order(messages.STATUS_PENDING)
        self.acme.poll.return_value = (authorization_resource(messages.STATUS_VALID), mock.Mock())
        challenge = order.authorizations()[0].dns_challenge()

        status = challenge.validate(15)

        self.assertEqual(status, "valid")
        self.assertEqual(self.sleep.calls, [15])
        self.acme.answer_challenge.assert_called_once()
        self.assertIsNotNone(order.confirm_validations())

    def test_validate_wraps_acme_errors(self):
        """Checks that a rejected challenge answer is raised as OrderError."""
        order = self.order(messages.STATUS_PENDING)
        self.acme.answer_challenge.side_effect = transient_problem()

        with self.assertRaises(errors.OrderError):
            order.authorizations()[0].dns_challenge().validate(15)

        self.assertEqual(self.sleep.calls, [])

    def test_new_order_builds_csr(self):
        """Checks that the order is placed with a CSR for the requested name."""
        self.acme.new_order.return_value = messages.OrderResource(uri="https://acme.test/order/2", authorizations=[])

        order = self.account.new_order("*.example.com", [], keystore.generate_domain_key())

        csr_pem = self.acme.new_order.call_args[0][0]
        self.assertTrue(csr_pem.startswith(b"-----BEGIN CERTIFICATE REQUEST-----"))
        self.assertEqual(order.resource.uri, "https://acme.test/order/2")

    def test_finalize_returns_chain(self):
        """Checks that finalization hands back the issued full chain."""
        resource = messages.OrderResource(uri="https://acme.test/order/1", authorizations=[])
        self.acme.finalize_order.return_value = resource.update(fullchain_pem="CHAIN")

        cert_order = acme_client.FinalizableOrder(self.account, resource).finalize(90)

        self.assertEqual(cert_order.download_certificate(), "CHAIN")
        self.assertIs(self.acme.finalize_order.call_args[0][0], resource)


@mock.patch("simple_acme_renew.acme_client.client.ClientV2")
@mock.patch("simple_acme_renew.acme_client.client.ClientNetwork")
class TestDirectory(unittest.TestCase):
    """Tests account registration and lookup through a mocked ACME client."""

    def connect(self, network_class):
        """Makes the mocked network return a directory document."""
        network_class.return_value.get.return_value.json.return_value = DIRECTORY_JSON
        return acme_client.Directory(DIRECTORY_URL, verify_ssl=False, sleep=SleepRecorder())

    def test_register_account(self, network_class, client_class):
        """Checks that a new RSA-2048 account agrees to the terms of service with the given contacts."""
        acme = client_class.return_value
        acme.new_account.return_value = messages.RegistrationResource(uri="https://acme.test/acct/1")

        account = self.connect(network_class).register_account(["mailto:admin@example.com"])

        registration = acme.new_account.call_args[0][0]
        self.assertEqual(registration.contact, ("mailto:admin@example.com",))
        self.assertTrue(registration.terms_of_service_agreed)
        self.assertFalse(registration.only_return_existing)
        self.assertEqual(account.resource.uri, "https://acme.test/acct/1")
        key = keystore.load_private_key(account.private_key_pem())
        self.assertIsInstance(key, rsa.RSAPrivateKey)
        self.assertEqual(key.key_size, 2048)
        network_class.return_value.get.assert_called_once_with(DIRECTORY_URL)
        self.assertEqual(network_class.call_args.kwargs["alg"], jose.RS256)
        self.assertFalse(network_class.call_args.kwargs["verify_ssl"])

    def test_load_account(self, network_class, client_class):
        """Checks that an existing key only looks up its account instead of registering a new one."""
        acme = client_class.return_value
        acme.new_account.return_value = messages.RegistrationResource(uri="https://acme.test/acct/1")
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        pem = acme_client.Account(None, key, None, None).private_key_pem()

        account = self.connect(network_class).load_account(pem, ["mailto:admin@example.com"])

        registration = acme.new_account.call_args[0][0]
        self.assertTrue(registration.only_return_existing)
        self.assertEqual(account.private_key_pem(), pem)
        self.assertEqual(account.key.private_numbers(), key.private_numbers())
        acme.query_registration.assert_not_called()

    def test_load_account_follows_conflict_location(self, network_class, client_class):
        """Checks that an existing account reported through a conflict is queried at its location."""
        acme = client_class.return_value
        acme.new_account.side_effect = acme_errors.ConflictError("https://acme.test/acct/7")
        acme.query_registration.return_value = messages.RegistrationResource(uri="https://acme.test/acct/7")
        pem = keystore.generate_domain_key()

        account = self.connect(network_class).load_account(pem, [])

        queried = acme.query_registration.call_args[0][0]
        self.assertEqual(queried.uri, "https://acme.test/acct/7")
        self.assertEqual(account.resource.uri, "https://acme.test/acct/7")
        self.assertEqual(network_class.call_args.kwargs["alg"], jose.ES384)

    def test_load_account_rejects_corrupted_key(self, network_class, client_class):
        """Checks that an unparsable account key raises before contacting the server."""
        with self.assertRaises(errors.InvalidPrivateKey):
            acme_client.Directory(DIRECTORY_URL).load_account(b"garbage", [])

        network_class.assert_not_called()
        client_class.assert_not_called()


if __name__ == "__main__":
    unittest.main()
