from __future__ import annotations

from typing import Literal, get_args


SpaceType = Literal[
    "MEETING_ROOM",
    "CONFERENCE_ROOM",
    "PHONE_BOOTH",
    "EVENT_SPACE",
    "COMMON_AREA",
    "KITCHEN",
    "LOUNGE",
    "HOT_DESK",
    "PRIVATE_OFFICE",
]

BookingStatus = Literal[
    "PENDING",
    "CONFIRMED",
    "CANCELLED",
    "COMPLETED",
    "NO_SHOW",
    "CHECKED_IN",
    "CHECKED_OUT",
]

ServiceCategory = Literal[
    "PRINTING",
    "COFFEE",
    "FOOD",
    "PARKING",
    "STORAGE",
    "MAIL",
    "PHONE",
    "INTERNET",
    "CLEANING",
    "WELLNESS",
    "EVENT_SERVICES",
    "OTHER",
]
ServiceType = Literal["ON_DEMAND", "SCHEDULED", "SUBSCRIPTION", "ONE_TIME"]
ServiceAvailability = Literal["ALWAYS", "BUSINESS_HOURS", "SCHEDULED", "LIMITED"]

RequestStatus = Literal[
    "PENDING",
    "APPROVED",
    "REJECTED",
    "IN_PROGRESS",
    "ON_HOLD",
    "COMPLETED",
    "CANCELLED",
]
RequestPriority = Literal["LOW", "NORMAL", "HIGH", "URGENT"]

ContractStatus = Literal[
    "DRAFT",
    "PENDING_SIGNATURE",
    "ACTIVE",
    "SUSPENDED",
    "EXPIRED",
    "TERMINATED",
    "CANCELLED",
]
ContractType = Literal["MEMBERSHIP", "SERVICE", "EVENT_SPACE", "MEETING_ROOM", "CUSTOM"]
PartyRole = Literal["CLIENT", "COMPANY"]
TemplateVariableType = Literal["text", "number", "date", "boolean", "currency", "list"]
RenewalStatus = Literal["NONE", "PENDING", "APPROVED", "DECLINED", "AUTO_RENEWED"]

RenewalTrigger = Literal["DAYS_BEFORE_EXPIRY", "MANUAL", "AUTO_ON_EXPIRY"]
RenewalType = Literal["EXTEND_CURRENT", "NEW_CONTRACT", "RENEGOTIATE"]
NotificationType = Literal["EMAIL", "SMS", "IN_APP", "WEBHOOK"]
PriceAdjustmentType = Literal["PERCENTAGE", "FIXED_AMOUNT"]
ProposalStatus = Literal["PENDING", "APPROVED", "DECLINED", "AUTO_RENEWED", "EXPIRED"]
ProposalAction = Literal["APPROVE", "DECLINE"]

SecurityEventType = Literal[
    "UNAUTHORIZED_ACCESS",
    "MALICIOUS_REQUEST",
    "BRUTE_FORCE",
    "DATA_BREACH",
    "SUSPICIOUS_ACTIVITY",
]
Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]

RetentionEntityType = Literal["AuditLog", "SecurityEvent", "Booking", "ServiceRequest", "User"]
RetentionAction = Literal["DELETE", "ANONYMIZE", "ARCHIVE", "REVIEW"]
RetentionOperation = Literal["older_than", "not_accessed_since"]
LegalBasis = Literal[
    "CONSENT",
    "CONTRACT",
    "LEGAL_OBLIGATION",
    "VITAL_INTERESTS",
    "PUBLIC_TASK",
    "LEGITIMATE_INTERESTS",
]
ConsentType = Literal["MARKETING", "ANALYTICS", "DATA_PROCESSING", "THIRD_PARTY_SHARING", "COOKIES"]
ConsentSource = Literal["WEB_FORM", "API", "EMAIL", "IN_PERSON"]
ExportRequestType = Literal["ACCESS", "PORTABILITY"]
ExportFormat = Literal["JSON"]

PricingTargetMetric = Literal["revenue", "volume", "profit"]


TERMINAL_REQUEST_STATUSES: tuple[str, ...] = ("COMPLETED", "CANCELLED", "REJECTED")
PRIORITY_RANK: dict[str, int] = {"URGENT": 4, "HIGH": 3, "NORMAL": 2, "LOW": 1}
SERVICE_CATEGORIES: tuple[str, ...] = get_args(ServiceCategory)
BOOKING_STATUSES: tuple[str, ...] = get_args(BookingStatus)
REQUEST_STATUSES: tuple[str, ...] = get_args(RequestStatus)
REQUEST_PRIORITIES: tuple[str, ...] = get_args(RequestPriority)
CONTRACT_STATUSES: tuple[str, ...] = get_args(ContractStatus)
CONTRACT_TYPES: tuple[str, ...] = get_args(ContractType)
CONSENT_TYPES: tuple[str, ...] = get_args(ConsentType)
TEMPLATE_VARIABLE_TYPES: tuple[str, ...] = get_args(TemplateVariableType)
