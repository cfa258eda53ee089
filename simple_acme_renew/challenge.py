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
"""Publishes and removes the `_acme-challenge` TXT record of a domain at the DNS provider."""
import logging

from . import errors

logger = logging.getLogger(__name__)

DNS_LABEL = "_acme-challenge"
CHALLENGE_TTL = 60


def challenge_name(domain: str) -> str:
    """Returns the fully qualified challenge record name of a domain, e.g. `_acme-challenge.example.com.`"""
    return f"{DNS_LABEL}.{domain}."


class DnsChallengeCoordinator:
    """
    Creates and deletes DNS-01 challenge records through a DNS provider client. The coordinator keeps no state of its
    own; the provider's zone is the only source of truth.
    """

    def __init__(self, provider) -> None:
        """
        Args:
            provider (simple_acme_renew.cloudflare.CloudflareClient): The client of the zone holding the domain.
        """
        self.provider = provider

    def list_challenge_records(self, domain: str) -> list:
        """
        Lists the ids of the TXT records whose name contains both `_acme-challenge` and `domain`. Other TXT records of
        the zone (SPF, DKIM, ...) are left alone.

        Returns:
            list: The matching record ids. An empty list when there are none or when the provider could not be
                queried.
        """
        try:
            records = self.provider.list_dns_records("TXT")
        except errors.DnsProviderError as exc:
            logger.error("Unable to list DNS TXT records for %s: %s", domain, exc.message)
            return []

        return [
            record["id"] for record in records
            if record.get("type", "TXT") == "TXT"
            and DNS_LABEL in record.get("name", "")
            and domain in record.get("name", "")
        ]

    def delete_challenge_records(self, domain: str) -> int:
        """
        Deletes every challenge record of `domain`. A failure on one record is logged and does not stop the deletion
        of the others.

        Returns:
            int: The number of records deleted.
        """
        deleted = 0

        for record_id in self.list_challenge_records(domain):
            try:
                self.provider.delete_dns_record(record_id)
                deleted += 1
                logger.info("DNS TXT record %s destroyed for %s", record_id, domain)
            except errors.DnsProviderError as exc:
                logger.error("Unable to destroy DNS TXT record %s for %s: %s", record_id, domain, exc.message)

        return deleted

    def create_challenge_record(self, domain: str, proof: str) -> str:
        """
        Creates the `_acme-challenge.<domain>.` TXT record holding `proof`. Stale records must be removed with
        `delete_challenge_records()` beforehand so the CA only sees a single proof.

        Returns:
            str: The id of the created record.

        Raises:
            simple_acme_renew.errors.DnsProviderError: When the provider rejects the record.
        """
        record = self.provider.create_dns_record(
            "TXT", challenge_name(domain), proof, ttl=CHALLENGE_TTL, proxied=False
        )
        logger.info("DNS TXT record created for %s", domain)
        return record.get("id", "")
