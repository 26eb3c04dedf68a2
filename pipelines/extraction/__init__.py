from .document_classifier import Classification, DocumentType, classify_document
from .field_extractor import FieldExtractor, parse_date

__all__ = ["Classification", "DocumentType", "FieldExtractor", "classify_document", "parse_date"]
