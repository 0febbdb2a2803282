import re
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from config import DOCUMENT_CONFIGS, ID_FIELD_PATTERNS

from .models import Document, DocumentType

DATE_FORMATS = ("%d-%m-%Y", "%d/%m/%Y", "%Y-%m-%d", "%d.%m.%Y")

NAME_MISMATCH = "NAME_MISMATCH"
DOB_MISMATCH = "DOB_MISMATCH"
AADHAAR_FRONT_BACK_MISMATCH = "AADHAAR_FRONT_BACK_MISMATCH"

IDENTITY_ISSUES = frozenset({NAME_MISMATCH, DOB_MISMATCH, AADHAAR_FRONT_BACK_MISMATCH})


class DocumentChecks:
    """
    Field format checks and cross-document consistency checks on extracted data
    """

    def __init__(self):
        self.patterns = {field: re.compile(p) for field, p in ID_FIELD_PATTERNS.items()}

    def normalize_text(self, text: Optional[str]) -> str:
        """Normalize text for comparison"""
        if not text:
            return ""
        return re.sub(r"\s+", " ", re.sub(r"[^\w\s]", " ", text.strip().lower())).strip()

    def normalize_id(self, value: str) -> str:
        return re.sub(r"\s+", " ", value.strip().upper())

    def parse_date(self, value: Optional[str]) -> Optional[date]:
        if not value:
            return None
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(value.strip(), fmt).date()
            except ValueError:
                continue
        return None

    def required_fields(self, document_type: DocumentType) -> List[str]:
        return list(DOCUMENT_CONFIGS[document_type.value]["required_fields"])

    def id_fields(self, document_type: DocumentType) -> List[str]:
        return list(DOCUMENT_CONFIGS[document_type.value]["id_fields"])

    def format_results(self, document: Document) -> Dict[str, bool]:
        """
        Pass/fail per identity-number field present on the document.
        Masked values (containing X placeholders) are not checked.
        """
        results = {}
        for field in self.id_fields(document.document_type):
            value = document.field_value(field)
            if value is None:
                continue
            normalized = self.normalize_id(value)
            if field == "aadhaar_number" and "X" in normalized:
                results[field] = True
                continue
            pattern = self.patterns.get(field)
            results[field] = bool(pattern.fullmatch(normalized)) if pattern else True
        return results

    def cross_document_consistency(self, documents: Sequence[Document],
                                   registry_fields: Optional[Dict[str, str]] = None) -> List[str]:
        """
        Name / date-of-birth agreement across documents (and the consent-exchange
        registry record, when one was fetched), plus Aadhaar front/back agreement.
        """
        issues = []
        sources = [{"name": d.field_value("name"), "date_of_birth": d.field_value("date_of_birth")}
                   for d in documents]
        if registry_fields:
            sources.append({"name": registry_fields.get("name"),
                            "date_of_birth": registry_fields.get("date_of_birth")})

        names = {self.normalize_text(s["name"]) for s in sources if s["name"]}
        if len(names) > 1:
            issues.append(NAME_MISMATCH)

        dobs = set()
        for s in sources:
            raw = s["date_of_birth"]
            if not raw:
                continue
            parsed = self.parse_date(raw)
            dobs.add(parsed.isoformat() if parsed else self.normalize_text(raw))
        if len(dobs) > 1:
            issues.append(DOB_MISMATCH)

        fronts = [d.field_value("aadhaar_number") for d in documents
                  if d.document_type == DocumentType.AADHAAR_FRONT]
        backs = [d.field_value("aadhaar_number") for d in documents
                 if d.document_type == DocumentType.AADHAAR_BACK]
        front_numbers = {re.sub(r"\s+", "", n) for n in fronts if n}
        back_numbers = {re.sub(r"\s+", "", n) for n in backs if n}
        if front_numbers and back_numbers and front_numbers != back_numbers:
            issues.append(AADHAAR_FRONT_BACK_MISMATCH)

        return issues
