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
"""Tests for the certificate expiry gate."""
import datetime
import pathlib
import tempfile
import unittest

from simple_acme_renew import errors
from simple_acme_renew import keystore
from simple_acme_renew.expiry import ExpiryDecision, add_months, check_expiry, read_expiry
from simple_acme_renew.tests.tools import make_certificate

NOW = datetime.datetime(2026, 10, 17, 12, 0, tzinfo=datetime.timezone.utc)


class TestCheckExpiry(unittest.TestCase):
    """Tests check_expiry() with a fixed current time."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.chain_path = pathlib.Path(self.temp_dir.name).joinpath("chained.pem")
        self.key_pem = keystore.generate_domain_key()

    def tearDown(self):
        self.temp_dir.cleanup()

    def write_chain(self, not_after: datetime.datetime, key_pem: bytes = None) -> None:
        self.chain_path.write_text(make_certificate(key_pem or self.key_pem, "example.com", not_after))

    def test_missing_chain_requires_renewal(self):
        """Checks that a domain without a certificate is renewed."""
        self.assertEqual(check_expiry(self.chain_path, self.key_pem, now=NOW), ExpiryDecision.RENEWAL_REQUIRED)

    def test_fresh_certificate_is_kept(self):
        """Checks that a certificate expiring three months from now is not renewed with a two month threshold."""
        self.write_chain(add_months(NOW, 3))

        self.assertEqual(check_expiry(self.chain_path, self.key_pem, 2, now=NOW), ExpiryDecision.RENEWAL_NOT_NEEDED)

    def test_expiring_certificate_requires_renewal(self):
        """Checks that a certificate expiring within the threshold is renewed."""
        self.write_chain(NOW + datetime.timedelta(days=30))

        self.assertEqual(check_expiry(self.chain_path, self.key_pem, 2, now=NOW), ExpiryDecision.RENEWAL_REQUIRED)

    def test_expiry_exactly_at_threshold_requires_renewal(self):
        """Checks that the comparison is strict: expiring exactly at now + threshold is renewed."""
        self.write_chain(add_months(NOW, 2))

        self.assertEqual(check_expiry(self.chain_path, self.key_pem, 2, now=NOW), ExpiryDecision.RENEWAL_REQUIRED)

    def test_one_second_after_threshold_is_kept(self):
        """Checks the boundary just after the threshold."""
        self.write_chain(add_months(NOW, 2) + datetime.timedelta(seconds=1))

        self.assertEqual(check_expiry(self.chain_path, self.key_pem, 2, now=NOW), ExpiryDecision.RENEWAL_NOT_NEEDED)

    def test_naive_now_is_treated_as_utc(self):
        """Checks that a naive current time is compared as UTC."""
        self.write_chain(add_months(NOW, 3))

        decision = check_expiry(self.chain_path, self.key_pem, 2, now=NOW.replace(tzinfo=None))

        self.assertEqual(decision, ExpiryDecision.RENEWAL_NOT_NEEDED)

    def test_corrupted_chain_raises(self):
        """Checks that an unparsable chain raises InvalidCertificate instead of being overwritten."""
        self.chain_path.write_text("not a certificate")

        with self.assertRaises(errors.InvalidCertificate):
            check_expiry(self.chain_path, self.key_pem, now=NOW)

    def test_certificate_for_other_key_raises(self):
        """Checks that a certificate issued for another key halts the check instead of triggering a renewal."""
        self.write_chain(add_months(NOW, 3), key_pem=keystore.generate_domain_key())

        with self.assertRaises(errors.InvalidCertificate):
            check_expiry(self.chain_path, self.key_pem, now=NOW)

    def test_read_expiry(self):
        """Checks that the leaf certificate expiry is returned as an aware UTC timestamp."""
        self.write_chain(NOW + datetime.timedelta(days=10))

        self.assertEqual(read_expiry(self.chain_path), NOW + datetime.timedelta(days=10))


class TestAddMonths(unittest.TestCase):
    """Tests calendar month arithmetic."""

    def test_add_months(self):
        """Checks plain additions across a year boundary."""
        self.assertEqual(add_months(datetime.datetime(2026, 10, 17), 2), datetime.datetime(2026, 12, 17))
        self.assertEqual(add_months(datetime.datetime(2026, 11, 30), 2), datetime.datetime(2027, 1, 30))

    def test_add_months_clamps_day(self):
        """Checks that the day is clamped to the end of shorter months."""
        self.assertEqual(add_months(datetime.datetime(2026, 12, 31), 2), datetime.datetime(2027, 2, 28))
        self.assertEqual(add_months(datetime.datetime(2027, 12, 31), 2), datetime.datetime(2028, 2, 29))

    def test_add_months_keeps_timezone(self):
        """Checks that the time of day and timezone are preserved."""
        self.assertEqual(add_months(NOW, 1), datetime.datetime(2026, 11, 17, 12, 0, tzinfo=datetime.timezone.utc))


if __name__ == "__main__":
    unittest.main()
