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
simple_acme_renew keeps Let's Encrypt certificates fresh for domains hosted on Cloudflare. Each domain gets an apex and
a wildcard certificate, validated with the ACME DNS-01 challenge. The DNS provider is only used to publish the
short-lived `_acme-challenge` TXT record; certificates and keys are kept on the local file system.
"""
__version__ = "1.0.0"
__pdoc__ = {"tests": False}    # Excludes 'tests' submodule from documentation

# pylint: disable=wrong-import-position
from . import errors
from . import tools
from .config import Config, RenewalSettings, load as load_config
from .expiry import ExpiryDecision, check_expiry
from .order import OrderState, OrderStateMachine
from .renewal import Renewer
from .retry import retry_call

__all__ = [
    "Config",
    "ExpiryDecision",
    "OrderState",
    "OrderStateMachine",
    "RenewalSettings",
    "Renewer",
    "check_expiry",
    "errors",
    "load_config",
    "retry_call",
    "tools",
]
