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
"""Command line entry point renewing the wildcard and apex certificates of every configured domain."""
import argparse
import logging

import requests
from acme import errors as acme_errors

from . import __version__
from . import config as config_module
from . import errors
from .renewal import Renewer

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RENEWAL_FAILED = 1
EXIT_CONFIG_ERROR = 2
CONFIG_ERRORS = (errors.InvalidConfig, errors.InvalidDomain, errors.InvalidEmail)
RENEWAL_ERRORS = (
    errors.RenewalFailed,
    errors.InvalidPrivateKey,
    errors.InvalidCertificate,
    acme_errors.Error,
    requests.RequestException,
    OSError,
)


def get_parser() -> argparse.ArgumentParser:
    """Builds the argument parser."""
    parser = argparse.ArgumentParser(
        prog="simple-acme-renew",
        description="Renew Let's Encrypt certificates for Cloudflare hosted domains using the DNS-01 challenge.",
    )
    parser.add_argument("-c", "--config", help="Path to the YAML configuration file.")
    parser.add_argument(
        "-d", "--domain", action="append", default=[],
        help="Only renew this configured domain. May be given more than once."
    )
    parser.add_argument("--staging", action="store_true", help="Force the Let's Encrypt staging environment.")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Sets up the root logger for console output."""
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def renew_domains(renewer: Renewer, domains: list) -> int:
    """
    Renews the wildcard and then the apex certificate of each domain. Both variants of a domain are always attempted;
    a failure stops processing of the remaining domains.

    Returns:
        int: The process exit status.
    """
    for domain in domains:
        failed = False
        for wildcard in (True, False):
            try:
                renewer.renew(domain, wildcard=wildcard)
            except RENEWAL_ERRORS as exc:
                failed = True
                logger.error("Renewal of %s (wildcard: %s) failed: %s", domain, wildcard, exc)
                renewer.dispatcher.notify_failure(domain, wildcard, exc)
        if failed:
            return EXIT_RENEWAL_FAILED
    return EXIT_OK


def main(argv: list = None) -> int:
    """Runs the renewal for the configured domains and returns the process exit status."""
    args = get_parser().parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    try:
        config = config_module.load(args.config)
    except CONFIG_ERRORS as exc:
        logger.error("Unable to load the configuration: %s", exc.message)
        return EXIT_CONFIG_ERROR
    logger.debug("The configuration is: %s", config)

    if args.staging:
        config.acme_staging = True

    domains = config.domains()
    if args.domain:
        unknown = [domain for domain in args.domain if domain not in domains]
        if unknown:
            logger.error("Domains %s are not configured.", unknown)
            return EXIT_CONFIG_ERROR
        domains = args.domain

    logger.info("simple_acme_renew v%s will generate certificates for domains: %s", __version__, domains)
    return renew_domains(Renewer(config), domains)
