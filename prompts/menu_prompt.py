# prompts/menu_prompt.py
# Builds the instruction set sent to the LLM for ONE source file and cleans
# whatever text comes back so json.loads() gets a fair chance.
from __future__ import annotations

import json
import re
from typing import Dict, List, Sequence, Tuple

from prompts.menu_types import ALLOWED_CURRENCIES, OcrPage

__all__ = [
    "CANONICAL_TREATMENTS_BY_CATEGORY",
    "PRICE_ANCHOR_RE",
    "find_price_anchors",
    "build_prompt",
    "sanitize_model_response",
]

# --------------------------------------------------------------------------- #
# 1  Canonical treatment names offered to the model                           #
# --------------------------------------------------------------------------- #
# Kept separate from menu_matching.TREATMENT_NAMES: the model's pick is only a
# hint and is re-checked by the matcher during normalisation.
CANONICAL_TREATMENTS_BY_CATEGORY: Dict[str, Tuple[str, ...]] = {
    "Diagnostics": (
        "Health Checkup", "Cancer Screening", "MRI Scan", "CT Scan", "PET-CT Scan",
        "Blood Test", "Cardiac Screening",
    ),
    "Surgery": (
        "Hip & Knee Replacement", "Spinal Surgery", "Brain Tumor Surgery", "Heart Valve Repair",
        "Kidney Transplant", "Liver Transplant", "LASIK Surgery", "Cataract Surgery",
        "Glaucoma Surgery", "Gastric Sleeve", "Gastric Bypass", "Endoscopic Sleeve Gastroplasty",
        "Gender-Affirming Surgery", "Pacemaker Implantation", "Prostate Surgery",
        "Vasectomy Reversal", "Hysterectomy", "Fibroid Removal", "Corneal Transplant",
        "Deep Brain Stimulation (DBS)", "Epilepsy Surgery", "Spinal Cord Surgery",
    ),
    "Cosmetic & Plastic Surgery": (
        "Facial Plastic Surgery", "Breast Augmentation", "Rhinoplasty", "Liposuction",
        "Botox Treatment", "Dermal Fillers", "Hair Transplant", "Laser Resurfacing",
        "Buccal Fat Removal", "Chin Augmentation", "Teeth Whitening", "Veneer",
    ),
    "Treatment": (
        "Dental Implants", "Root Canal", "IVF (In Vitro Fertilization)",
        "IUI (Intrauterine Insemination)", "Egg Freezing", "HRT (Hormone Replacement Therapy)",
    ),
    "Oncology": ("Chemotherapy", "Radiation Therapy", "Immunotherapy", "Proton Therapy"),
    "Wellness": ("Detox Retreats", "IV Therapy", "Anti-Aging Therapy", "Physiotherapy"),
    "Traditional Medicine": ("Acupuncture", "Ayurveda", "Thai Massage"),
}

# --------------------------------------------------------------------------- #
# 2  Price anchors                                                            #
# --------------------------------------------------------------------------- #
_SYMBOL = r"(?:US\$|S\$|SG\$|RM|£|€|฿|₩|\$)"
_CODE = r"(?:USD|THB|EUR|GBP|SGD|MYR|KRW|BAHT|Baht|baht)"
_AMOUNT = r"\d{1,3}(?:[,.]\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?"

# "£100", "RM 2,000", "from £55", "120 USD", "150€", "3,500 baht"
PRICE_ANCHOR_RE = re.compile(
    rf"(?:(?<![A-Za-z]){_SYMBOL}\s?(?P<a1>{_AMOUNT}))"
    rf"|(?:(?<![A-Za-z]){_CODE}\s?(?P<a2>{_AMOUNT}))"
    rf"|(?:(?<![\d.,])(?P<a3>{_AMOUNT})\s?(?:{_SYMBOL}|{_CODE}\b))"
)


def find_price_anchors(text: str) -> List[str]:
    """
    Return every price anchor in reading order. Exact repeats within the same
    line are kept once; the same price on different lines counts twice
    (two items can share a price).
    """
    anchors: List[str] = []
    for line in (text or "").splitlines():
        seen_on_line = set()
        for m in PRICE_ANCHOR_RE.finditer(line):
            token = re.sub(r"\s+", " ", m.group(0).strip())
            if token in seen_on_line:
                continue
            seen_on_line.add(token)
            anchors.append(token)
    return anchors


# --------------------------------------------------------------------------- #
# 3  Prompt builder                                                           #
# --------------------------------------------------------------------------- #
def _canonical_block() -> str:
    parts = []
    for category, names in CANONICAL_TREATMENTS_BY_CATEGORY.items():
        parts.append(f"{category}:\n" + "\n".join(f'- "{n}"' for n in names))
    return "\n\n".join(parts)


def _pages_block(pages: Sequence[OcrPage]) -> str:
    return "\n".join(
        f"--- PAGE {p.page_number} ({p.file_name}) ---\n{p.raw_text}\n" for p in pages
    )


def build_prompt(pages_for_one_file: Sequence[OcrPage]) -> str:
    """
    Build the extraction prompt for ONE file (any number of pages).
    Pages are re-sorted by page_number so reading order is guaranteed.
    """
    pages = sorted(pages_for_one_file, key=lambda p: p.page_number)
    file_name = pages[0].file_name if pages else "Unknown file"
    currencies = " | ".join(f'"{c}"' for c in ALLOWED_CURRENCIES)
    anchor_count = len(find_price_anchors("\n".join(p.raw_text for p in pages)))

    return f"""
You are converting a clinic price menu into structured package records for a bulk CSV import.

SOURCE
------
- FILE NAME: "{file_name}"
- TOTAL PAGES: {len(pages)}
- PRICE ANCHORS DETECTED BY A REGEX PRE-SCAN: {anchor_count} (a hint, not a target; you may find more)

The OCR text below may span several pages, use two or more columns, mix English with
Chinese, Thai, Malay or Korean, and pack many priced items into one unbroken paragraph.
Line breaks are meaningful: items close together on a line or on neighbouring lines belong together.

SEGMENTATION ALGORITHM (FOLLOW IN ORDER)
----------------------------------------
1. Read ALL pages and ALL lines. Do not stop early.
2. Find every PRICE ANCHOR: a currency symbol or code directly next to a number.
   Examples: "£100", "RM 150", "RM 2,000", "120 USD", "150€", "฿3,500", "S$80", "from £55".
3. Each price anchor defines exactly ONE candidate package.
4. The package name is the nearest plausible label within one or two lines of its anchor,
   usually immediately before it ("Hydration Drip £100").
5. Descriptive text after an anchor (ingredients, inclusions, duration, dosage) belongs to the
   PRECEDING anchor's package, up to the next anchor. Never attach it to the following package.
6. Section headings with no price of their own ("IV DRIP MENU", "Express IV Drips") are never
   packages. Use them as treatment_category / category for the packages beneath them.
7. MINIMUM OUTPUT: if you found N distinct price anchors you MUST return at least N packages.
   The only exception is an anchor that repeats the exact same item (e.g. a summary table
   restating a price); in that case merge them and add the warning
   "Merged duplicate price anchor for <title>".
8. AMBIGUOUS BOUNDARIES: still emit the package. Set _meta.confidence_score between 0.3 and 0.6
   and explain in _meta.warnings, e.g.
   - "Low confidence segmentation: package boundaries may be incorrect"
   - "Title and description may be mixed from neighbouring items"
   - "Price attached with low confidence"
   Prefer a low-confidence package over silently dropping an item.
9. Pure explanatory copy ("Time needed: approx. 20 mins", "Save £10 when you book two")
   is not a package. Fold it into the description / details / duration of the nearest package.
10. Items written only in Chinese or another non-English language are still packages.

Dense layout example:

  Express IV Drips
  Hydration Drip £100 Sodium Chloride + Bicarbonate + Potassium MultiVit Drip £125 Basic Hydration + B Complex

gives TWO packages:
  - "Hydration Drip", price 100, GBP, includes "Sodium Chloride,Bicarbonate,Potassium"
  - "MultiVit Drip", price 125, GBP, includes "Basic Hydration,B Complex"
  both with treatment_category "Express IV Drips".

OUTPUT FORMAT
-------------
Return VALID JSON only: no markdown, no backticks, no commentary. Exactly this top-level shape:

{{
  "packages": [ {{ ...package... }}, ... ]
}}

Every package object MUST contain ALL of these keys:

- title: string
- description: string
- details: string
- hospital_name: string
- treatment_name: string
- sub_treatments: string (comma-separated, e.g. "Hydration,Skin Rejuvenation")
- price: number or null
- original_price: number or null
- currency: {currencies}
- duration: string
- treatment_category: string
- anaesthesia: string
- commission: number or null
- featured: boolean
- status: "active" | "inactive"
- doctor_name: string
- is_le_package: boolean
- includes: string (comma-separated, e.g. "Consultation,Drip,Follow Up")
- image_file_id: string or null
- hospital_location: string
- category: string
- hospital_country: string
- translation_title: string
- translation_description: string
- translation_details: string
- translation: string
- _meta: {{
    "source_file": string,
    "source_page": number,
    "confidence_score": number between 0 and 1,
    "warnings": [string]
  }}

Unknown values: "" for strings, null for numbers, false for featured / is_le_package,
"active" for status. Prices are plain numbers without symbols or thousands separators.

CURRENCY HINTS
--------------
"£" → GBP, "€" → EUR, "RM" → MYR, "฿" or "baht" → THB, "S$" → SGD, "₩" or "won" → KRW,
"$" in a US or unspecified context → USD. If no currency can be inferred, use "USD" and add the
warning "Currency not recognized".

LANGUAGE & TRANSLATION
----------------------
- English source: keep title / description / details in English; translation_title,
  translation_description, translation_details are ""; translation is "" or "EN".
- Non-English source: keep the ORIGINAL text in title / description / details, put a Chinese
  translation in translation_title / translation_description / translation_details, and set
  translation to a short tag such as "ZH" or "TH->ZH".
- Unreadable text: leave translation_* as "" and warn "OCR text unreadable for this package".

CANONICAL TREATMENT NAMES
-------------------------
When an item clearly matches one of these, set treatment_name to the exact string
(same capitalisation and spacing). Otherwise use a short descriptive name
such as "IV Drip Therapy" or "Skin Rejuvenation Package".

{_canonical_block()}

EXAMPLE WARNINGS
----------------
"Hospital not recognized: ...", "Treatment not recognized: ...", "Missing price for package ...",
"Currency not recognized", "Low confidence segmentation: package boundaries may be incorrect"

OCR INPUT (THIS FILE ONLY, BY PAGE)
-----------------------------------
{_pages_block(pages)}
"""


# --------------------------------------------------------------------------- #
# 4  Response sanitizer                                                       #
# --------------------------------------------------------------------------- #
_FENCE_OPEN_RE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```$")
_PAIRS = {"{": "}", "[": "]"}


def sanitize_model_response(raw: str) -> str:
    """
    Strip ``` / ```json fences, then cut the prose around the JSON: the span
    from the first '{' to the last '}' or from the first '[' to the last ']',
    whichever parses and starts earlier. If neither parses, the '{' span (or
    the bare text) is returned so json.loads() fails loudly on bad output.
    """
    if not raw:
        return ""
    text = raw.strip()
    text = _FENCE_OPEN_RE.sub("", text)
    text = _FENCE_CLOSE_RE.sub("", text.strip()).strip()

    if text[:1] in _PAIRS and text[-1:] == _PAIRS[text[:1]]:
        return text

    # (start, span) per bracket kind; prose may carry a stray "[note]"
    spans = []
    for opener, closer in _PAIRS.items():
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            spans.append((start, text[start:end + 1].strip()))
    if not spans:
        return text
    # outermost span that parses wins
    for _, candidate in sorted(spans):
        try:
            json.loads(candidate)
        except json.JSONDecodeError:
            continue
        return candidate
    return spans[0][1]
