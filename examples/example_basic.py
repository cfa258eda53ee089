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

import logging

import simple_acme_renew

logging.basicConfig(level=logging.INFO)

# Load the configuration. Without a path, /etc/simple_acme_renew/config.yml, ~/.config/simple_acme_renew/config.yml
# and ./config.yml are tried in that order. See examples/config.yml for the format.
config = simple_acme_renew.load_config("examples/config.yml")

# Always use the Let's Encrypt staging environment while experimenting
config.acme_staging = True

renewer = simple_acme_renew.Renewer(config)

for domain in config.domains():
    try:
        # Each domain gets a wildcard and an apex certificate, stored under `data_dir`
        for wildcard in (True, False):
            if renewer.renew(domain, wildcard=wildcard):
                print(f"Renewed the certificate for {'*.' if wildcard else ''}{domain}")
            else:
                print(f"The certificate for {'*.' if wildcard else ''}{domain} is still fresh")
    except simple_acme_renew.errors.RenewalFailed as exc:
        print(f"Renewal failed: {exc.message}")
