"""
Partner Enablement Scores
=========================

The scoring engine blends a 0-100 enablement score into the engagement
dimension. This module defines the provider contract and two providers:

- StaticEnablementProvider: scores supplied up front (e.g. from an LMS export)
- CertificationEnablementProvider: derived from certifications, badges,
  training completions and skill endorsements
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from utils import clamp, round_score

# Points per record and component weights for the certification score
CERTIFICATION_POINTS = 25
BADGE_POINTS = 20
TRAINING_POINTS = 20
ENDORSEMENT_POINTS = 25

COMPONENT_WEIGHTS = {
    "certifications": 0.3,
    "badges": 0.2,
    "trainings": 0.3,
    "endorsements": 0.2,
}


@dataclass
class Certification:
    partner_id: str
    name: str
    status: str = "active"          # active, expired
    earned_at: Optional[datetime] = None


@dataclass
class Badge:
    partner_id: str
    name: str
    earned_at: Optional[datetime] = None


@dataclass
class TrainingCompletion:
    partner_id: str
    course_name: str
    completed_at: Optional[datetime] = None
    score: Optional[float] = None


@dataclass
class SkillEndorsement:
    partner_id: str
    skill: str
    endorsed_by: Optional[str] = None


class EnablementProvider:
    """Source of 0-100 enablement scores. Unknown partners score 0."""

    def get_score(self, partner_id: str) -> int:
        return 0


class StaticEnablementProvider(EnablementProvider):
    """Scores looked up from a mapping, clamped to 0-100."""

    def __init__(self, scores: Optional[Dict[str, float]] = None):
        self.scores = dict(scores or {})

    def get_score(self, partner_id: str) -> int:
        return round_score(clamp(self.scores.get(partner_id, 0)))


class CertificationEnablementProvider(EnablementProvider):
    """
    Score partners on their enablement records.

    Each component is capped at 100 (certs 25 points each, badges 20,
    trainings 20, endorsements 25), then weighted 30/20/30/20.
    Expired certifications don't count.
    """

    def __init__(
        self,
        certifications: Optional[List[Certification]] = None,
        badges: Optional[List[Badge]] = None,
        trainings: Optional[List[TrainingCompletion]] = None,
        endorsements: Optional[List[SkillEndorsement]] = None
    ):
        self.certifications = certifications or []
        self.badges = badges or []
        self.trainings = trainings or []
        self.endorsements = endorsements or []

    def get_score(self, partner_id: str) -> int:
        certs = [c for c in self.certifications if c.partner_id == partner_id and c.status == "active"]
        badges = [b for b in self.badges if b.partner_id == partner_id]
        trainings = [t for t in self.trainings if t.partner_id == partner_id]
        endorsements = [e for e in self.endorsements if e.partner_id == partner_id]

        cert_score = min(100, len(certs) * CERTIFICATION_POINTS)
        badge_score = min(100, len(badges) * BADGE_POINTS)
        training_score = min(100, len(trainings) * TRAINING_POINTS)
        endorse_score = min(100, len(endorsements) * ENDORSEMENT_POINTS)

        return round_score(
            cert_score * COMPONENT_WEIGHTS["certifications"]
            + badge_score * COMPONENT_WEIGHTS["badges"]
            + training_score * COMPONENT_WEIGHTS["trainings"]
            + endorse_score * COMPONENT_WEIGHTS["endorsements"]
        )
