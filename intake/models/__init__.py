# Make `from intake.models import Lead, Verification` work
from .orm import (  # re-export
    ConsentLog,
    InvestorProfile,
    Lead,
    StudentRequest,
    TouristRequest,
    Verification,
)
