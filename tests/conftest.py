"""Shared test fixtures and configuration for Consentry tests."""

import pytest
from pathlib import Path
import sys

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from consentry.consent.config import ConsentConfiguration
from consentry.consent.jar import InMemoryCookieJar
from consentry.consent.scheduling import ManualClock, ManualScheduler
from consentry.consent.service import ConsentService


@pytest.fixture
def consent_config():
    """Default consent configuration, independent of config/consent.yaml."""
    return ConsentConfiguration()


@pytest.fixture
def clock():
    """Manual clock starting at 2024-01-01 UTC."""
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    """Deterministic scheduler advancing the manual clock."""
    return ManualScheduler(clock)


@pytest.fixture
def jar():
    """Cookie jar for a www host with a registrable root domain."""
    return InMemoryCookieJar("www.example.com")


@pytest.fixture
def service(jar, consent_config, scheduler, clock):
    """Consent service wired with deterministic scheduling."""
    return ConsentService(jar, config=consent_config, scheduler=scheduler, clock=clock)


@pytest.fixture
def sample_reference_csv():
    """Open Cookie Database style CSV sample."""
    return (
        "ID,Platform,Category,Cookie / Data Key name,Domain,Description,"
        "Retention period,Data Controller,User Privacy & GDPR Rights Portals,Wildcard match\n"
        "1,Google Analytics,Analytics,_ga,google.com,\"ID used, to identify users\",2 years,Google,https://policies.google.com,0\n"
        "2,Hotjar,Analytics,_hjSession_*,hotjar.com,Session data,30 minutes,Hotjar,,0\n"
        "3,Facebook,Marketing,_fbp,facebook.com,Tracks visits,3 months,Facebook,,0\n"
        "4,Stripe,Functional,__stripe_mid,stripe.com,Fraud prevention,1 year,Stripe,,1\n"
        "5,Example,Security,foo_sec,example.com,Unmapped category,1 day,Example,,0\n"
        "6,Custom,Preferences,custom_pref,example.com,Saved preferences,1 year,Custom,,0\n"
    )
