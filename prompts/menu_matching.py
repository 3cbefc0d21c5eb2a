# prompts/menu_matching.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

__all__ = [
    "HOSPITAL_NAMES",
    "TREATMENT_NAMES",
    "MIN_HOSPITAL_SCORE",
    "MIN_TREATMENT_SCORE",
    "MatchResult",
    "normalize",
    "similarity_score",
    "match_hospital_name",
    "match_treatment_name",
]

# ------------------------------------------------------------------
# 1.  Curated reference lists (immutable lookup tables)
# ------------------------------------------------------------------
HOSPITAL_NAMES: Tuple[str, ...] = (
    "Bumrungrad Intl",
    "Mery Plastic Surgery",
    "Pruksa Clinic",
    "SLC hospital",
    "Panacee Medical Center",
    "The Square Clinic",
    "Vethjani Hospital",
    "Phuket Plastic Surgery Institute",
    "Wansiri Hospital",
    "Prince Court",
    "Raffles Medical",
    "Sunway Medical Center",
    "Thomson Hospital",
    "China Medical University Hospital - 中國醫藥大學附設醫院",
)

TREATMENT_NAMES: Tuple[str, ...] = (
    # Diagnostics
    "Health Checkup",
    "Cancer Screening",
    "MRI Scan",
    "CT Scan",
    "PET-CT Scan",
    "Blood Test",
    "Cardiac Screening",
    # Surgery
    "Hip & Knee Replacement",
    "Spinal Surgery",
    "Brain Tumor Surgery",
    "Heart Valve Repair",
    "Kidney Transplant",
    "Liver Transplant",
    "LASIK Surgery",
    "Cataract Surgery",
    "Glaucoma Surgery",
    "Gastric Sleeve",
    "Gastric Bypass",
    "Endoscopic Sleeve Gastroplasty",
    "Gender-Affirming Surgery",
    "Pacemaker Implantation",
    "Prostate Surgery",
    "Vasectomy Reversal",
    "Hysterectomy",
    "Fibroid Removal",
    "Corneal Transplant",
    "Deep Brain Stimulation (DBS)",
    "Epilepsy Surgery",
    "Spinal Cord Surgery",
    # Cosmetic & plastic
    "Facial Plastic Surgery",
    "Breast Augmentation",
    "Rhinoplasty",
    "Liposuction",
    "Botox Treatment",
    "Dermal Fillers",
    "Hair Transplant",
    "Laser Resurfacing",
    "Buccal Fat Removal",
    "Chin Augmentation",
    "Teeth Whitening",
    "Veneer",
    # Treatment
    "Dental Implants",
    "Root Canal",
    "IVF (In Vitro Fertilization)",
    "IUI (Intrauterine Insemination)",
    "Egg Freezing",
    "HRT (Hormone Replacement Therapy)",
    # Oncology
    "Chemotherapy",
    "Radiation Therapy",
    "Immunotherapy",
    "Proton Therapy",
    # Wellness
    "Detox Retreats",
    "IV Therapy",
    "Anti-Aging Therapy",
    "Physiotherapy",
    # Traditional medicine
    "Acupuncture",
    "Ayurveda",
    "Thai Massage",
)

MIN_HOSPITAL_SCORE = 0.72
MIN_TREATMENT_SCORE = 0.70

# ------------------------------------------------------------------
# 2.  Normalisation
# ------------------------------------------------------------------
# Abbreviations seen on menus and in the curated list, expanded on both
# sides so "Intl" and "International" compare equal.
_abbrev_map = {
    "intl": "international",
    "int'l": "international",
    "hosp": "hospital",
    "med": "medical",
    "ctr": "center",
    "centre": "center",
    "univ": "university",
    "inst": "institute",
}
_abbrev_re = re.compile(
    r"(?<![a-z0-9'])(" + "|".join(re.escape(k) for k in sorted(_abbrev_map, key=len, reverse=True)) + r")\.?(?![a-z0-9'])"
)
_non_alnum_re = re.compile(r"[^a-z0-9]+")


def normalize(text: str) -> str:
    """Lower-case, expand known abbreviations, drop everything but [a-z0-9]."""
    low = str(text or "").lower()
    low = _abbrev_re.sub(lambda m: _abbrev_map[m.group(1)], low)
    return _non_alnum_re.sub("", low)


def similarity_score(source: str, candidate: str) -> float:
    """1 - levenshtein / max(len) on normalised strings; 0.0 if either side is empty."""
    a, b = normalize(source), normalize(candidate)
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


# ------------------------------------------------------------------
# 3.  Matching
# ------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class MatchResult:
    value: Optional[str]   # canonical name, or None below threshold
    score: float           # best score found, reported even when rejected


def _best_match(raw: str, choices: Sequence[str], threshold: float) -> MatchResult:
    if not str(raw or "").strip():
        return MatchResult(value=None, score=0.0)

    if not normalize(raw):
        return MatchResult(value=None, score=0.0)

    # processor runs on the query and on every choice
    best = process.extractOne(
        raw,
        choices,
        scorer=Levenshtein.normalized_similarity,
        processor=normalize,
    )
    if best is None:
        return MatchResult(value=None, score=0.0)

    choice, score, _ = best
    score = float(score)
    if score < threshold:
        return MatchResult(value=None, score=score)
    return MatchResult(value=choice, score=score)


def match_hospital_name(raw: str) -> MatchResult:
    """Fuzzy-match a free-text hospital name against HOSPITAL_NAMES."""
    return _best_match(raw, HOSPITAL_NAMES, MIN_HOSPITAL_SCORE)


def match_treatment_name(raw: str) -> MatchResult:
    """Fuzzy-match a free-text treatment name against TREATMENT_NAMES."""
    return _best_match(raw, TREATMENT_NAMES, MIN_TREATMENT_SCORE)
