"""
Wires one instance of every licensing service onto the Flask app.

Blueprints reach them through ``get_services()``; tests build the app
with their own clock and read the same container.
"""
from datetime import timedelta

from flask import current_app

from licensing.accounts import Accounts
from licensing.catalog import Catalog
from licensing.code_generator import CodeGenerator
from licensing.commission import CommissionCascade
from licensing.hierarchy import AgentHierarchy
from licensing.key_store import KeyStore
from licensing.login_limiter import LoginLimiter
from licensing.sales import SalesDesk
from utils import utc_now

EXTENSION_KEY = "licensing"


class LicensingServices:

    def __init__(self, config, clock=utc_now):
        self.clock = clock
        self.codes = CodeGenerator()
        self.limiter = LoginLimiter(
            max_attempts=config["LOGIN_MAX_ATTEMPTS"],
            lock_duration=timedelta(minutes=config["LOGIN_LOCK_MINUTES"]),
            clock=clock,
        )
        self.catalog = Catalog()
        self.accounts = Accounts(self.limiter, clock=clock)
        self.keys = KeyStore(self.catalog, self.codes, clock=clock,
                             max_mint_count=config["MAX_MINT_COUNT"])
        self.hierarchy = AgentHierarchy(
            self.codes,
            clock=clock,
            max_level=config["MAX_AGENT_LEVEL"],
            invitation_ttl=timedelta(days=config["INVITATION_TTL_DAYS"]),
        )
        self.commission = CommissionCascade(
            self.codes,
            clock=clock,
            max_level=config["MAX_AGENT_LEVEL"],
            min_amount=config["MIN_COMMISSION_AMOUNT"],
        )
        self.sales = SalesDesk(self.keys, self.commission, clock=clock)


def init_services(app, clock=None):
    services = LicensingServices(app.config, clock=clock or utc_now)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> LicensingServices:
    return current_app.extensions[EXTENSION_KEY]
