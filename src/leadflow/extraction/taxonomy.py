"""Service synonym taxonomy.

Maps customer wording (keywords, synonyms, misspellings, Arabic phrases) onto
the service intents the flows are keyed by.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import cache

from leadflow.core.errors import ExtractionAmbiguous

KEYWORD_SCORE = 10
SYNONYM_SCORE = 7
TRANSLATION_SCORE = 7
MISSPELLING_SCORE = 5
CLEAR_WIN_MARGIN = 3


@dataclass(slots=True, frozen=True)
class ServiceSynonym:
    service: str
    keywords: tuple[str, ...]
    synonyms: tuple[str, ...] = ()
    misspellings: tuple[str, ...] = ()
    translations: tuple[str, ...] = ()


@dataclass(slots=True)
class ServiceMatch:
    service: str
    score: int
    term: str
    runners_up: list[str] = field(default_factory=list)


SERVICE_TAXONOMY: tuple[ServiceSynonym, ...] = (
    ServiceSynonym(
        service="family_visa",
        keywords=("family visa", "family", "wife", "husband", "spouse", "children", "dependent", "dependents"),
        synonyms=("family residence visa", "family sponsorship", "dependent visa", "spouse visa"),
        misspellings=("famili visa", "family viza", "famly visa"),
        translations=("تأشيرة عائلية", "عائلة", "زوجة", "أطفال"),
    ),
    ServiceSynonym(
        service="golden_visa",
        keywords=("golden visa", "golden", "10 year visa", "10-year visa", "long term visa"),
        synonyms=("gold visa", "golden residence", "long-term residence"),
        misspellings=("golden viza", "goldan visa"),
        translations=("تأشيرة ذهبية", "إقامة ذهبية"),
    ),
    ServiceSynonym(
        service="freelance_visa",
        keywords=("freelance visa", "freelance", "freelancer", "freelancing"),
        synonyms=("freelance permit", "self-employed visa", "self employed visa"),
        misspellings=("freelance viza", "freelanse", "frelance"),
        translations=("عمل حر",),
    ),
    ServiceSynonym(
        service="employment_visa",
        keywords=("employment visa", "work visa", "work permit", "job visa"),
        synonyms=("employee visa", "worker visa", "labor visa", "labour visa"),
        misspellings=("employement visa", "work viza"),
        translations=("تأشيرة عمل", "تصريح عمل"),
    ),
    ServiceSynonym(
        service="visit_visa",
        keywords=("visit visa", "tourist visa", "tourist", "visitor visa"),
        synonyms=("short stay visa", "entry permit", "entry visa"),
        misspellings=("visit viza", "tourist viza", "vist visa"),
        translations=("تأشيرة زيارة", "تأشيرة سياحية"),
    ),
    ServiceSynonym(
        service="mainland_business_setup",
        keywords=("business setup", "company setup", "mainland", "trade license"),
        synonyms=(
            "mainland company",
            "mainland license",
            "company registration",
            "business registration",
            "commercial license",
            "start a business",
            "open a company",
        ),
        misspellings=("business set up", "bussiness setup", "bussiness license"),
        translations=("رخصة تجارية", "ترخيص تجاري"),
    ),
    ServiceSynonym(
        service="freezone_business_setup",
        keywords=("freezone", "free zone"),
        synonyms=(
            "freezone company",
            "free zone company",
            "freezone license",
            "offshore company",
            "business setup",
            "company setup",
        ),
        misspellings=("fre zone", "freezon", "free-zone"),
        translations=("منطقة حرة",),
    ),
    ServiceSynonym(
        service="pro_services",
        keywords=("pro services", "pro service", "typing", "government services"),
        synonyms=("public relations officer", "typing center", "document clearing"),
        misspellings=("typing centre",),
        translations=("خدمات حكومية",),
    ),
    ServiceSynonym(
        service="visa_renewal",
        keywords=("visa renewal", "renew visa", "renew my visa", "renewal"),
        synonyms=("visa extension", "extend visa", "extend my visa", "renew residence"),
        misspellings=("renewel", "renual"),
        translations=("تجديد تأشيرة", "تجديد"),
    ),
    ServiceSynonym(
        service="emirates_id",
        keywords=("emirates id", "eid card", "emirates identity"),
        synonyms=("uae id", "id card renewal", "id renewal"),
        misspellings=("emirate id", "emirates i.d"),
        translations=("هوية إماراتية",),
    ),
)

SERVICE_KEYS = frozenset(entry.service for entry in SERVICE_TAXONOMY)


@cache
def _term_pattern(term: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\w){re.escape(term.lower())}(?!\w)")


def _first_hit(text: str, terms: tuple[str, ...]) -> str | None:
    for term in terms:
        if _term_pattern(term).search(text):
            return term
    return None


def match_service(text: str) -> ServiceMatch | None:
    """Score every taxonomy entry against ``text`` and return the winner.

    Raises:
        ExtractionAmbiguous: when the two best candidates are within
            ``CLEAR_WIN_MARGIN`` and neither is a clear keyword winner.
    """

    lowered = text.lower().strip()
    if not lowered:
        return None

    scored: list[ServiceMatch] = []
    for entry in SERVICE_TAXONOMY:
        score = 0
        matched = ""
        for terms, weight in (
            (entry.keywords, KEYWORD_SCORE),
            (entry.synonyms, SYNONYM_SCORE),
            (entry.misspellings, MISSPELLING_SCORE),
            (entry.translations, TRANSLATION_SCORE),
        ):
            hit = _first_hit(lowered, terms)
            if hit is not None:
                score += weight
                matched = matched or hit
        if score:
            scored.append(ServiceMatch(service=entry.service, score=score, term=matched))

    if not scored:
        return None

    scored.sort(key=lambda match: match.score, reverse=True)
    best = scored[0]
    if len(scored) == 1 or best.score - scored[1].score > CLEAR_WIN_MARGIN:
        return best
    if best.score == scored[1].score:
        raise ExtractionAmbiguous(
            "service_intent",
            [match.service for match in scored if match.score == best.score],
        )
    best.runners_up = [match.service for match in scored[1:]]
    return best
