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
"""A minimal Cloudflare v4 API client limited to the DNS record calls needed for DNS-01 challenges."""
import logging

import requests

from . import errors

logger = logging.getLogger(__name__)

API_URL = "https://api.cloudflare.com/client/v4"
DEFAULT_TIMEOUT = 30
PAGE_SIZE = 100


class CloudflareClient:
    """Lists, creates and deletes DNS records in a single Cloudflare zone."""

    def __init__(self, zone_id: str, api_token: str, session: requests.Session = None, timeout: int = DEFAULT_TIMEOUT):
        """
        Args:
            zone_id (str): The identifier of the zone holding the domain.
            api_token (str): An API token with DNS edit permission on the zone.
            session (requests.Session): The HTTP session to use. A new session is created when omitted.
            timeout (int): The HTTP timeout (in seconds) of each request.
        """
        self.zone_id = zone_id
        self.timeout = timeout
        self.session = session if session else requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        })

    @property
    def records_url(self) -> str:
        """The `dns_records` collection URL of the zone."""
        return f"{API_URL}/zones/{self.zone_id}/dns_records"

    def _request(self, method: str, url: str, **kwargs) -> dict:
        """
        Sends an API request and unwraps the Cloudflare response envelope.

        Returns:
            dict: The decoded response body.

        Raises:
            simple_acme_renew.errors.DnsProviderError: When the request fails or the API reports an error.
        """
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise errors.DnsProviderError(f"Cloudflare API request {method} {url} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.ok or not body.get("success", False):
            messages = [error.get("message", "") for error in body.get("errors", [])] or [response.text]
            msg = f"Cloudflare API error ({response.status_code}) on {method} {url}: {'; '.join(messages)}"
            raise errors.DnsProviderError(msg)

        return body

    def list_dns_records(self, record_type: str = None) -> list:
        """
        Lists the DNS records of the zone, following pagination.

        Args:
            record_type (str): Only return records of this type (e.g. `TXT`) when set.

        Returns:
            list: The record dictionaries as returned by the API (`id`, `name`, `type`, `content`, ...).
        """
        records = []
        page = 1

        while True:
            params = {"page": page, "per_page": PAGE_SIZE}
            if record_type:
                params["type"] = record_type
            body = self._request("GET", self.records_url, params=params)
            records.extend(body.get("result") or [])

            total_pages = (body.get("result_info") or {}).get("total_pages", 1)
            if page >= total_pages:
                return records
            page += 1

    def create_dns_record(self, record_type: str, name: str, content: str, ttl: int = 60, proxied: bool = False) -> dict:
        """
        Creates a DNS record in the zone.

        Returns:
            dict: The created record, including its `id`.
        """
        data = {"type": record_type, "name": name, "content": content, "ttl": ttl, "proxied": proxied}
        return self._request("POST", self.records_url, json=data).get("result") or {}

    def delete_dns_record(self, record_id: str) -> None:
        """Deletes the DNS record identified by `record_id`."""
        self._request("DELETE", f"{self.records_url}/{record_id}")
