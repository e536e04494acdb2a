# driveflow/models/enum.py
from enum import Enum


class UserRole(str, Enum):
    CUSTOMER = "customer"
    MERCHANT = "merchant"
    STAFF = "staff"
    ADMIN = "admin"


class StaffSubRole(str, Enum):
    DRIVER = "Driver"
    TECHNICIAN = "Technician"
    SUPPORT = "Support"
    MANAGER = "Manager"


class ApprovalType(str, Enum):
    USER_REGISTRATION = "UserRegistration"
    PART_REPLACEMENT = "PartReplacement"
    EXTRA_COST = "ExtraCost"
    BILL_EDIT = "BillEdit"


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class RelatedModel(str, Enum):
    BOOKING = "Booking"
    USER = "User"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class DelayReason(str, Enum):
    WAITING_FOR_PARTS = "Waiting for parts"
    TECHNICIAN_UNAVAILABLE = "Technician unavailable"
    CUSTOMER_APPROVAL_PENDING = "Customer approval pending"
    OTHER = "Other"


class FuelType(str, Enum):
    PETROL = "Petrol"
    DIESEL = "Diesel"
    CNG = "CNG"
    ELECTRIC = "Electric"
    HYBRID = "Hybrid"
