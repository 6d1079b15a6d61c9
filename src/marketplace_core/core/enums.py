"""Enumerations used across the marketplace core."""

from enum import Enum


class UserRole(str, Enum):
    MAID = "maid"
    SPONSOR = "sponsor"
    AGENCY = "agency"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class PasswordResetStatus(str, Enum):
    PENDING = "pending"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    INTERVIEWING = "interviewing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class SponsorProfileStatus(str, Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    ACTIVE = "active"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class AgencyProfileStatus(str, Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    ACTIVE = "active"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class JobPostingStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    FILLED = "filled"
    CANCELLED = "cancelled"


class SponsorDocumentType(str, Enum):
    ID_DOCUMENT = "id_document"
    PROOF_OF_RESIDENCE = "proof_of_residence"


class AgencyDocumentType(str, Enum):
    BUSINESS_LICENSE = "business_license"
    TAX_CERTIFICATE = "tax_certificate"
    INSURANCE_CERTIFICATE = "insurance_certificate"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
