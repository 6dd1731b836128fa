from .status import OUTCOME_ERROR, OUTCOME_PENDING, OUTCOME_SUCCESS, StatusClient, StatusResult, classify, make_session

__all__ = [
    "OUTCOME_ERROR",
    "OUTCOME_PENDING",
    "OUTCOME_SUCCESS",
    "StatusClient",
    "StatusResult",
    "classify",
    "make_session",
]
