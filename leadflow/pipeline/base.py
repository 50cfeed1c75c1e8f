"""
Pipeline contracts — error taxonomy, collaborator interfaces, result types.

Concrete providers (Scrapingdog, website scraper, OpenAI, mocks) implement the
collaborator ABCs; the state machines only see these uniform interfaces.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional


# ── Errors ────────────────────────────────────────────────────────────────────

class PipelineError(Exception):
    """Base class for errors the controller raises on purpose."""


class PolicyError(PipelineError):
    """A guard was violated (e.g. pausing a run that is not researching). No state changed."""


class RunNotFoundError(PipelineError):
    def __init__(self, run_id):
        self.run_id = run_id
        super().__init__(f"Run {run_id} not found")


class LeadNotFoundError(PipelineError):
    def __init__(self, lead_id):
        self.lead_id = lead_id
        super().__init__(f"Lead {lead_id} not found")


class OwnershipError(PipelineError):
    """Caller does not own the run."""


class ProviderError(PipelineError):
    """An external collaborator failed for one unit of work (one query, one lead)."""

    def __init__(self, provider, message):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


# ── Collaborator results ─────────────────────────────────────────────────────

@dataclass
class BusinessRecord:
    """One business returned by discovery."""
    name: str
    place_id: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    maps_url: Optional[str] = None

    @property
    def dedup_key(self) -> Optional[str]:
        if self.place_id:
            return self.place_id
        if self.latitude is not None and self.longitude is not None:
            return f'coord_{self.latitude}_{self.longitude}'
        return None


@dataclass
class ScrapedSite:
    """Website content for one lead."""
    main_content: str
    about_content: Optional[str] = None
    team_content: Optional[str] = None
    has_multiple_locations: bool = False
    team_size: Optional[str] = None


PRESCREEN_FALLBACK_REASON = 'Prescreen error - proceeding with research'


@dataclass
class PrescreenVerdict:
    """Franchise / national-brand classification for one lead."""
    should_research: bool
    reason: str
    is_franchise: bool = False
    is_national_brand: bool = False
    confidence: str = 'medium'

    @property
    def result(self) -> str:
        return 'research' if self.should_research else 'skip'

    @classmethod
    def fail_open(cls):
        """Verdict used when the classifier cannot give one: research, low confidence."""
        return cls(should_research=True, reason=PRESCREEN_FALLBACK_REASON, confidence='low')


@dataclass
class ResearchReport:
    """Grade + report for one lead."""
    grade: str
    grade_reasoning: str
    report: str = ''
    suggested_hooks: List[str] = field(default_factory=list)
    pain_points: List[str] = field(default_factory=list)
    opportunities: List[str] = field(default_factory=list)


# ── Collaborator interfaces ───────────────────────────────────────────────────

class BusinessDiscovery(ABC):
    """Finds businesses for a query in a location (e.g. Google Maps)."""
    name: str = ''

    @abstractmethod
    def search(self, query: str, location: str, limit: int) -> List[BusinessRecord]:
        """Return up to `limit` businesses. Raises ProviderError on failure."""
        ...


class WebsiteFinder(ABC):
    """Looks up a website for a business that discovery returned without one."""

    @abstractmethod
    def find_website(self, business_name: str, location: str) -> Optional[str]:
        ...


class WebsiteScraper(ABC):
    name: str = ''

    @abstractmethod
    def scrape(self, url: str) -> ScrapedSite:
        """Fetch site content. Raises ProviderError when nothing usable comes back."""
        ...


class LeadAnalyzer(ABC):
    """AI analysis: prescreen classification, research grading, deep research."""
    name: str = ''

    @abstractmethod
    def prescreen(self, lead: Dict[str, Any], business_type: str) -> PrescreenVerdict:
        ...

    @abstractmethod
    def research(self, lead: Dict[str, Any], site: ScrapedSite, business_type: str) -> ResearchReport:
        ...

    @abstractmethod
    def deep_research(self, lead: Dict[str, Any], site: ScrapedSite, business_type: str) -> ResearchReport:
        ...
