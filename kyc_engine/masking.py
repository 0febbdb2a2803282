from typing import Dict, Optional

from .models import Document, DocumentType

# Fields returned to API callers verbatim
PUBLIC_FIELDS = {
    "gender", "date_of_birth", "year_of_birth", "issue_date", "valid_upto",
    "expiry_date", "issuing_authority", "state", "bill_date", "statement_date",
}


class FieldMasker:
    """
    Masks personal identifiers before extracted document data leaves the engine
    """

    def mask_aadhaar(self, aadhaar: str) -> Optional[str]:
        """Mask Aadhaar number showing only last 4 digits"""
        if not aadhaar:
            return None
        clean = aadhaar.replace(" ", "")
        if len(clean) != 12:
            return "INVALID_FORMAT"
        return f"XXXX XXXX {clean[-4:]}"

    def mask_pan(self, pan: str) -> Optional[str]:
        if not pan:
            return None
        clean = pan.replace(" ", "").upper()
        if len(clean) != 10:
            return "INVALID_FORMAT"
        return f"XXXXX{clean[5:9]}X"

    def mask_id_number(self, number: str) -> Optional[str]:
        """Show first 2 and last 4 characters"""
        if not number:
            return None
        if len(number) > 6:
            return f"{number[:2]}XXXX{number[-4:]}"
        return "XXXX"

    def mask_name(self, name: str) -> Optional[str]:
        """Mask name showing only first character and last name"""
        if not name:
            return None
        parts = name.strip().split()
        if len(parts) == 1:
            return f"{parts[0][0]}XXXX"
        return f"{parts[0][0]}XXXX {parts[-1]}"

    def mask_value(self, field: str, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if field == "aadhaar_number":
            return self.mask_aadhaar(value)
        if field == "pan_number":
            return self.mask_pan(value)
        if field in ("license_number", "voter_id_number", "passport_number"):
            return self.mask_id_number(value)
        if field in ("name", "father_name"):
            return self.mask_name(value)
        if field in PUBLIC_FIELDS:
            return value
        # Addresses and anything unknown
        return f"{value[0]}XXXX" if len(value) > 2 else value

    def mask_document(self, document: Document) -> Dict[str, Optional[str]]:
        masked = {}
        for name in document.fields:
            masked[name] = self.mask_value(name, document.field_value(name))
        if document.document_type == DocumentType.AADHAAR_BACK and "pincode" in masked:
            masked["pincode"] = document.field_value("pincode")
        return masked
