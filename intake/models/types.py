from typing import Literal, get_args

Language = Literal["it", "en"]
LeadType = Literal["investor", "student", "tourist", "waitlist"]
LeadStatus = Literal["new", "contacted", "qualified", "rejected"]
WaitlistInterest = Literal["investor", "student", "tourist"]
InvestorType = Literal["retail", "pro"]
RequestType = Literal["viewing", "apply"]
RequestStatus = Literal["pending", "confirmed", "completed", "cancelled"]
VerificationType = Literal["student", "investor"]
# "in_review" is reserved: nothing transitions into it yet
VerificationStatus = Literal["submitted", "in_review", "approved", "rejected"]
ReviewDecision = Literal["approved", "rejected"]
ConsentType = Literal["privacy", "marketing", "terms"]


def values(literal) -> tuple:
    return get_args(literal)


def check_in(column: str, literal) -> str:
    """SQL CHECK expression for a Literal-typed column."""
    opts = ", ".join(f"'{v}'" for v in get_args(literal))
    return f"{column} IN ({opts})"
