"""
Mobility Risk Agent - Text Parser (Admission Diagnosis & Medication NLP)

Turns the free-text parts of a patient snapshot into the categorical signals
the outcome models consume.

================================================================================
ADMISSION DIAGNOSIS CATEGORIES
================================================================================

The admission diagnosis is typed by clinicians ("L hip fracture s/p ORIF",
"CHF exacerbation", ...). It is lowercased and scanned against an ORDERED list
of keyword -> category pairs; the FIRST keyword found anywhere in the text wins.

┌─────────────────────────────────────────────────────────────────────────────┐
│  ORDER │  CATEGORY        │  EXAMPLE KEYWORDS                                │
├─────────────────────────────────────────────────────────────────────────────┤
│   1    │  neuro           │  stroke, cva, tbi, seizure, guillain             │
│   2    │  medical_pulm    │  pneumonia, copd, pulmonary embolism, pe         │
│   3    │  cardiac         │  heart failure, chf, mi, afib, valve             │
│   4    │  postop          │  post-op, surgery, appendectomy                  │
│   5    │  ortho           │  hip fracture, spine, joint replacement          │
│   6    │  oncology        │  cancer, lymphoma, chemotherapy                  │
│   7    │  sepsis          │  sepsis, cellulitis, uti, mrsa                   │
│   8    │  trauma          │  trauma, mva, fall, gunshot                      │
│   9    │  medical_gi      │  gi bleed, pancreatitis, cirrhosis               │
│  10    │  medical_renal   │  aki, ckd, dialysis                              │
│  11    │  medical_endo    │  diabetes, dka, thyroid                          │
├─────────────────────────────────────────────────────────────────────────────┤
│   -    │  general_medical │  (nothing matched)                               │
└─────────────────────────────────────────────────────────────────────────────┘

IMPLEMENTATION NOTES:
─────────────────────
- Plain substring matching, no word boundaries: short keywords such as "pe"
  and "mi" also match inside longer words ("appendectomy" -> medical_pulm).
- Structured admission booleans on the input outrank the text category.
- Medication buckets use the same substring approach over three token sets.

================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple


# Configure logging
logger = logging.getLogger(__name__)


class AdmissionCategory(str, Enum):
    """Coarse admission categories derived from the diagnosis."""
    NEURO = "neuro"
    MEDICAL_PULM = "medical_pulm"
    CARDIAC = "cardiac"
    POSTOP = "postop"
    ORTHO = "ortho"
    ONCOLOGY = "oncology"
    SEPSIS = "sepsis"
    TRAUMA = "trauma"
    MEDICAL_GI = "medical_gi"
    MEDICAL_RENAL = "medical_renal"
    MEDICAL_ENDO = "medical_endo"
    GENERAL_MEDICAL = "general_medical"


DEFAULT_CATEGORY = AdmissionCategory.GENERAL_MEDICAL

# Structured admission booleans, in precedence order.
STRUCTURED_ADMISSION_FLAGS: Tuple[Tuple[str, AdmissionCategory], ...] = (
    ("is_cardiac_admission", AdmissionCategory.CARDIAC),
    ("is_neuro_admission", AdmissionCategory.NEURO),
    ("is_orthopedic", AdmissionCategory.ORTHO),
    ("is_oncology", AdmissionCategory.ONCOLOGY),
    ("is_postoperative", AdmissionCategory.POSTOP),
    ("is_trauma_admission", AdmissionCategory.TRAUMA),
    ("is_sepsis", AdmissionCategory.SEPSIS),
)


# =============================================================================
# MEDICATION TOKENS
# =============================================================================

SEDATIVE_TOKENS = frozenset({
    "lorazepam", "diazepam", "alprazolam", "midazolam", "clonazepam",
    "zolpidem", "eszopiclone", "temazepam", "quetiapine", "haloperidol",
    "olanzapine", "trazodone", "morphine", "hydromorphone", "fentanyl",
    "oxycodone", "methadone", "propofol", "dexmedetomidine", "gabapentin",
})

ANTICOAGULANT_TOKENS = frozenset({
    "heparin", "enoxaparin", "fondaparinux", "apixaban", "rivaroxaban",
    "warfarin", "dabigatran",
})

STEROID_TOKENS = frozenset({
    "prednisone", "methylprednisolone", "dexamethasone", "hydrocortisone",
})


@dataclass(frozen=True)
class DiagnosisMatch:
    """
    Result of categorizing an admission diagnosis.

    Attributes:
        text: The lowercased diagnosis that was scanned
        category: Resolved category (general_medical when nothing matched)
        keyword: The keyword that decided the category, if any
    """
    text: str
    category: AdmissionCategory
    keyword: Optional[str] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "text": self.text,
            "category": self.category.value,
            "keyword": self.keyword,
        }


@dataclass(frozen=True)
class MedicationBuckets:
    """Which medication classes a patient is on."""
    sedating: bool = False
    anticoagulant: bool = False
    steroids: bool = False

    def to_dict(self) -> Dict:
        return {
            "sedating": self.sedating,
            "anticoagulant": self.anticoagulant,
            "steroids": self.steroids,
        }


class DiagnosisParser:
    """
    Maps free-text admission diagnoses onto admission categories.

    Usage:
        parser = DiagnosisParser()
        match = parser.categorize("Community acquired pneumonia")
        match.category  # AdmissionCategory.MEDICAL_PULM
    """

    # ==========================================================================
    # DIAGNOSIS KEYWORD DEFINITIONS
    # ==========================================================================
    # Scanned top to bottom; first keyword contained in the text wins.

    DIAGNOSIS_PATTERNS: List[Tuple[str, AdmissionCategory]] = [
        # Neurological
        ("stroke", AdmissionCategory.NEURO),
        ("cva", AdmissionCategory.NEURO),
        ("intracranial hemorrhage", AdmissionCategory.NEURO),
        ("ich", AdmissionCategory.NEURO),
        ("tbi", AdmissionCategory.NEURO),
        ("traumatic brain injury", AdmissionCategory.NEURO),
        ("seizure", AdmissionCategory.NEURO),
        ("epilepsy", AdmissionCategory.NEURO),
        ("meningitis", AdmissionCategory.NEURO),
        ("encephalitis", AdmissionCategory.NEURO),
        ("spinal cord", AdmissionCategory.NEURO),
        ("guillain", AdmissionCategory.NEURO),

        # Pulmonary / respiratory
        ("pneumonia", AdmissionCategory.MEDICAL_PULM),
        ("copd", AdmissionCategory.MEDICAL_PULM),
        ("asthma", AdmissionCategory.MEDICAL_PULM),
        ("respiratory failure", AdmissionCategory.MEDICAL_PULM),
        ("pulmonary embolism", AdmissionCategory.MEDICAL_PULM),
        ("pe", AdmissionCategory.MEDICAL_PULM),
        ("pneumothorax", AdmissionCategory.MEDICAL_PULM),
        ("pleural effusion", AdmissionCategory.MEDICAL_PULM),
        ("lung", AdmissionCategory.MEDICAL_PULM),

        # Cardiac
        ("heart failure", AdmissionCategory.CARDIAC),
        ("chf", AdmissionCategory.CARDIAC),
        ("mi", AdmissionCategory.CARDIAC),
        ("myocardial infarction", AdmissionCategory.CARDIAC),
        ("stemi", AdmissionCategory.CARDIAC),
        ("nstemi", AdmissionCategory.CARDIAC),
        ("cardiomyopathy", AdmissionCategory.CARDIAC),
        ("arrhythmia", AdmissionCategory.CARDIAC),
        ("atrial fibrillation", AdmissionCategory.CARDIAC),
        ("afib", AdmissionCategory.CARDIAC),
        ("cardiac arrest", AdmissionCategory.CARDIAC),
        ("pericarditis", AdmissionCategory.CARDIAC),
        ("aortic", AdmissionCategory.CARDIAC),
        ("valve", AdmissionCategory.CARDIAC),

        # Surgical / post-operative
        ("post-op", AdmissionCategory.POSTOP),
        ("postoperative", AdmissionCategory.POSTOP),
        ("surgery", AdmissionCategory.POSTOP),
        ("surgical", AdmissionCategory.POSTOP),
        ("appendectomy", AdmissionCategory.POSTOP),
        ("cholecystectomy", AdmissionCategory.POSTOP),
        ("laparoscopy", AdmissionCategory.POSTOP),
        ("bowel resection", AdmissionCategory.POSTOP),
        ("hernia repair", AdmissionCategory.POSTOP),

        # Orthopedic
        ("orthopedic", AdmissionCategory.ORTHO),
        ("hip fracture", AdmissionCategory.ORTHO),
        ("femur fracture", AdmissionCategory.ORTHO),
        ("spine", AdmissionCategory.ORTHO),
        ("vertebral", AdmissionCategory.ORTHO),
        ("joint replacement", AdmissionCategory.ORTHO),
        ("knee replacement", AdmissionCategory.ORTHO),
        ("hip replacement", AdmissionCategory.ORTHO),
        ("fracture", AdmissionCategory.ORTHO),
        ("dislocation", AdmissionCategory.ORTHO),
        ("amputation", AdmissionCategory.ORTHO),

        # Oncology
        ("cancer", AdmissionCategory.ONCOLOGY),
        ("malignancy", AdmissionCategory.ONCOLOGY),
        ("tumor", AdmissionCategory.ONCOLOGY),
        ("leukemia", AdmissionCategory.ONCOLOGY),
        ("lymphoma", AdmissionCategory.ONCOLOGY),
        ("metastasis", AdmissionCategory.ONCOLOGY),
        ("chemotherapy", AdmissionCategory.ONCOLOGY),
        ("radiation", AdmissionCategory.ONCOLOGY),

        # Infectious / sepsis
        ("sepsis", AdmissionCategory.SEPSIS),
        ("septic shock", AdmissionCategory.SEPSIS),
        ("bacteremia", AdmissionCategory.SEPSIS),
        ("infection", AdmissionCategory.SEPSIS),
        ("cellulitis", AdmissionCategory.SEPSIS),
        ("abscess", AdmissionCategory.SEPSIS),
        ("osteomyelitis", AdmissionCategory.SEPSIS),
        ("uti", AdmissionCategory.SEPSIS),
        ("c diff", AdmissionCategory.SEPSIS),
        ("mrsa", AdmissionCategory.SEPSIS),

        # Trauma
        ("trauma", AdmissionCategory.TRAUMA),
        ("mva", AdmissionCategory.TRAUMA),
        ("motor vehicle", AdmissionCategory.TRAUMA),
        ("fall", AdmissionCategory.TRAUMA),
        ("assault", AdmissionCategory.TRAUMA),
        ("gunshot", AdmissionCategory.TRAUMA),
        ("stab", AdmissionCategory.TRAUMA),
        ("blunt trauma", AdmissionCategory.TRAUMA),
        ("polytrauma", AdmissionCategory.TRAUMA),

        # GI / abdominal
        ("gi bleed", AdmissionCategory.MEDICAL_GI),
        ("gastrointestinal", AdmissionCategory.MEDICAL_GI),
        ("bleeding", AdmissionCategory.MEDICAL_GI),
        ("bowel obstruction", AdmissionCategory.MEDICAL_GI),
        ("pancreatitis", AdmissionCategory.MEDICAL_GI),
        ("liver", AdmissionCategory.MEDICAL_GI),
        ("hepatic", AdmissionCategory.MEDICAL_GI),
        ("cirrhosis", AdmissionCategory.MEDICAL_GI),
        ("colitis", AdmissionCategory.MEDICAL_GI),
        ("crohns", AdmissionCategory.MEDICAL_GI),

        # Renal / genitourinary
        ("kidney", AdmissionCategory.MEDICAL_RENAL),
        ("renal", AdmissionCategory.MEDICAL_RENAL),
        ("dialysis", AdmissionCategory.MEDICAL_RENAL),
        ("acute kidney injury", AdmissionCategory.MEDICAL_RENAL),
        ("aki", AdmissionCategory.MEDICAL_RENAL),
        ("chronic kidney disease", AdmissionCategory.MEDICAL_RENAL),
        ("ckd", AdmissionCategory.MEDICAL_RENAL),
        ("urinary retention", AdmissionCategory.MEDICAL_RENAL),

        # Endocrine / metabolic
        ("diabetes", AdmissionCategory.MEDICAL_ENDO),
        ("diabetic ketoacidosis", AdmissionCategory.MEDICAL_ENDO),
        ("dka", AdmissionCategory.MEDICAL_ENDO),
        ("thyroid", AdmissionCategory.MEDICAL_ENDO),
        ("hyperthyroid", AdmissionCategory.MEDICAL_ENDO),
        ("hypothyroid", AdmissionCategory.MEDICAL_ENDO),
        ("adrenal", AdmissionCategory.MEDICAL_ENDO),
    ]

    def __init__(self):
        """Initialize the parser with a private copy of the keyword table."""
        self.patterns: List[Tuple[str, AdmissionCategory]] = [
            (keyword.lower(), category) for keyword, category in self.DIAGNOSIS_PATTERNS
        ]
        logger.debug(f"DiagnosisParser initialized with {len(self.patterns)} keywords")

    def categorize(self, text: Optional[str]) -> DiagnosisMatch:
        """
        Categorize a free-text admission diagnosis.

        Args:
            text: Admission diagnosis as typed by the clinician (may be empty)

        Returns:
            DiagnosisMatch with the first matching category
        """
        lowered = (text or "").lower()
        for keyword, category in self.patterns:
            if keyword in lowered:
                return DiagnosisMatch(text=lowered, category=category, keyword=keyword)
        return DiagnosisMatch(text=lowered, category=DEFAULT_CATEGORY)

    def get_category_keywords(self, category: AdmissionCategory) -> List[str]:
        """List the keywords that map to a category, in scan order."""
        return [keyword for keyword, cat in self.patterns if cat == category]


def resolve_admission_category(
    structured: Mapping[str, bool],
    text_category: AdmissionCategory,
) -> AdmissionCategory:
    """
    Apply structured admission booleans over the text-derived category.

    The first structured flag set (cardiac, neuro, orthopedic, oncology,
    postoperative, trauma, sepsis) wins; otherwise the text category stands.
    """
    for flag_name, category in STRUCTURED_ADMISSION_FLAGS:
        if structured.get(flag_name):
            return category
    return text_category


def _contains_any(medications: List[str], tokens: frozenset) -> bool:
    return any(token in med for med in medications for token in tokens)


def bucket_medications(
    medications: Iterable[str],
    sedating: Optional[bool] = None,
    anticoagulant: Optional[bool] = None,
    steroids: Optional[bool] = None,
) -> MedicationBuckets:
    """
    Sort a medication list into sedating / anticoagulant / steroid buckets.

    An explicit boolean for a bucket always wins; only buckets left as None
    are derived from the medication strings.
    """
    meds = [str(m).lower() for m in medications or []]
    return MedicationBuckets(
        sedating=bool(sedating) if sedating is not None
        else _contains_any(meds, SEDATIVE_TOKENS),
        anticoagulant=bool(anticoagulant) if anticoagulant is not None
        else _contains_any(meds, ANTICOAGULANT_TOKENS),
        steroids=bool(steroids) if steroids is not None
        else _contains_any(meds, STEROID_TOKENS),
    )


# =============================================================================
# MODULE-LEVEL SINGLETON
# =============================================================================

# Create a singleton parser instance for reuse
_parser_instance: Optional[DiagnosisParser] = None


def get_parser() -> DiagnosisParser:
    """Get or create the singleton DiagnosisParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = DiagnosisParser()
    return _parser_instance


def categorize_diagnosis(text: Optional[str]) -> AdmissionCategory:
    """
    Convenience function to categorize an admission diagnosis.

    Args:
        text: Free-text admission diagnosis

    Returns:
        The resolved AdmissionCategory
    """
    return get_parser().categorize(text).category
