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
"""DNS tools to check that a DNS-01 proof is visible before asking the CA to validate it."""
import datetime
import logging
import time

import dns.exception
import dns.resolver

logger = logging.getLogger(__name__)


class TxtLookup:
    """Resolves the TXT values of a single DNS name, optionally rotating between nameservers."""

    def __init__(self, name: str, nameservers: list = None, round_robin: bool = True) -> None:
        """
        Args:
            name (str): The DNS name to query, e.g. `_acme-challenge.example.com`.
            nameservers (list): Nameserver addresses to query. The system resolvers are used when empty.
            round_robin (bool): Rotate between each nameserver after every query instead of always
                querying the first one.
        """
        self.name = name
        self.round_robin = round_robin
        self.nameservers = list(nameservers) if nameservers else dns.resolver.Resolver().nameservers
        self.last_nameserver = ""
        self.values = []

    def resolve(self) -> list:
        """
        Queries the current nameserver for the TXT values of `name`.

        Returns:
            list: The TXT values found, without surrounding quotes. An empty list when the name does
                not exist or has no TXT records yet.
        """
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = self.nameservers

        try:
            answer = resolver.resolve(self.name, "TXT")
            self.values = [b"".join(rdata.strings).decode() for rdata in answer]
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN, dns.resolver.NoNameservers, dns.exception.Timeout):
            self.values = []

        # Rotate the nameservers if round robin mode is enabled
        self.last_nameserver = self.nameservers[0] if self.nameservers else ""
        if self.round_robin and len(self.nameservers) > 1:
            self.nameservers = self.nameservers[1:] + [self.nameservers[0]]

        return self.values


def wait_for_txt(
        name: str,
        token: str,
        timeout: float,
        interval: float = 2,
        nameservers: list = None,
        sleep=time.sleep
) -> bool:
    """
    Polls `name` until one of its TXT values matches `token` or until the timeout is reached.

    Args:
        name (str): The challenge DNS name to query.
        token (str): The proof value expected in the TXT record.
        timeout (float): The amount of time (in seconds) to keep checking.
        interval (float): The amount of time (in seconds) between DNS queries.
        nameservers (list): Nameservers to query. The system resolvers are used when empty.
        sleep (callable): Function used to pause between queries.

    Returns:
        bool: Whether the token was seen before the timeout.
    """
    lookup = TxtLookup(name, nameservers=nameservers)
    deadline = datetime.datetime.now() + datetime.timedelta(seconds=timeout)

    while True:
        if token in lookup.resolve():
            logger.info("Token for %s found via %s", name, lookup.last_nameserver)
            return True
        if datetime.datetime.now() >= deadline:
            logger.warning("Token for %s not visible after %ss, requesting validation anyway", name, timeout)
            return False
        logger.debug("Token for %s not found in %s via %s", name, lookup.values, lookup.last_nameserver)
        sleep(interval)
