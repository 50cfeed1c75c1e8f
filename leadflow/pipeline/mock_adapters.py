"""
Mock collaborators — realistic fake data for local end-to-end runs.

Activated with MOCK_PIPELINE=1. Discovery, scraping and AI analysis are
replaced with canned responses so the whole run lifecycle (scrape → prescreen
→ research → completion) can be exercised without API keys.
"""
import hashlib
import logging
import random
import time

from leadflow.pipeline.base import (
    BusinessDiscovery, BusinessRecord, WebsiteScraper, ScrapedSite,
    LeadAnalyzer, PrescreenVerdict, ResearchReport, ProviderError,
)

logger = logging.getLogger('pipeline.mock')


MOCK_BUSINESSES = [
    {'name': 'Harbourside Plumbing Co', 'website': 'harboursideplumbing.com.au', 'phone': '02 9555 0101'},
    {'name': 'Bright Spark Electrical', 'website': 'brightspark.net.au', 'phone': '03 9555 0102'},
    {'name': 'Jim\'s Mowing', 'website': 'jimsmowing.com.au', 'phone': '131 546'},
    {'name': 'Greenleaf Landscapes', 'website': 'greenleaflandscapes.com.au', 'phone': '07 3555 0104'},
    {'name': 'Coastal Physio & Pilates', 'website': 'coastalphysio.com.au', 'phone': '02 4555 0105'},
    {'name': 'McDonald\'s', 'website': 'mcdonalds.com.au', 'phone': None},
    {'name': 'Northside Dental Studio', 'website': 'northsidedental.com.au', 'phone': '08 9555 0107'},
    {'name': 'Ironbark Carpentry', 'website': None, 'phone': '0400 555 108'},
    {'name': 'The Copper Kettle Cafe', 'website': 'copperkettle.cafe', 'phone': '03 5555 0109'},
    {'name': 'Summit Accounting Partners', 'website': 'summitaccounting.com.au', 'phone': '02 9555 0110'},
    {'name': 'Anytime Fitness', 'website': 'anytimefitness.com.au', 'phone': None},
    {'name': 'Bluegum Vet Clinic', 'website': 'bluegumvet.com.au', 'phone': '07 5555 0112'},
]

# Names the mock prescreen treats as chains
MOCK_CHAINS = {'McDonald\'s': 'national brand', 'Jim\'s Mowing': 'franchise', 'Anytime Fitness': 'franchise'}


def _simulate_delay(min_s=0.05, max_s=0.2):
    """Small delay to simulate API latency."""
    time.sleep(random.uniform(min_s, max_s))


def _stable_grade(name):
    """Same business always gets the same grade."""
    return 'ABCDF'[int(hashlib.md5(name.encode()).hexdigest(), 16) % 5]


class MockDiscovery(BusinessDiscovery):
    name = 'mock'

    def search(self, query, location, limit):
        _simulate_delay()
        results = []
        for i, business in enumerate(MOCK_BUSINESSES[:limit]):
            lat, lng = -33.86 + i * 0.01, 151.20 + i * 0.01
            results.append(BusinessRecord(
                name=business['name'],
                place_id=f"mock-{query}-{i}".replace(' ', '-'),
                address=f"{10 + i} Example St, {location}",
                phone=business['phone'],
                website=business['website'],
                latitude=lat,
                longitude=lng,
            ))
        logger.info("[MOCK] %d businesses for %s in %s", len(results), query, location)
        return results


class MockWebsiteScraper(WebsiteScraper):
    name = 'mock'

    def scrape(self, url):
        _simulate_delay()
        if 'cafe' in url:
            raise ProviderError('website', f'{url}: connection timed out')
        return ScrapedSite(
            main_content=f"Welcome to {url}. Family owned and operated since 1998. Our team of 8 staff serves the local area.",
            about_content="We are a small local business with a loyal customer base.",
            team_content=None,
            has_multiple_locations=False,
            team_size='small (1-10)',
        )


class MockAnalyzer(LeadAnalyzer):
    name = 'mock'

    def prescreen(self, lead, business_type):
        _simulate_delay()
        kind = MOCK_CHAINS.get(lead['name'])
        if kind:
            return PrescreenVerdict(
                should_research=False,
                reason=f"Recognised {kind}",
                is_franchise=kind == 'franchise',
                is_national_brand=kind == 'national brand',
                confidence='high',
            )
        return PrescreenVerdict(should_research=True, reason='Independent local business', confidence='medium')

    def research(self, lead, site, business_type):
        _simulate_delay()
        grade = _stable_grade(lead['name'])
        return ResearchReport(
            grade=grade,
            grade_reasoning=f"[MOCK] {lead['name']} looks like a grade {grade} fit for {business_type}.",
            report=f"[MOCK] Report for {lead['name']}",
            suggested_hooks=['Ask about their busiest season'],
            pain_points=['Manual booking process'],
            opportunities=['Online reviews follow-up'],
        )

    def deep_research(self, lead, site, business_type):
        report = self.research(lead, site, business_type)
        report.report = f"[MOCK] Deep dive for {lead['name']}"
        return report
