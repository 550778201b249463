from datetime import date
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CreateReservationDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    toolId: int
    startDate: date
    endDate: date
    note: Optional[str] = None


class ActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    note: Optional[str] = None


class DeclineRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: str = Field(..., min_length=1)


class CancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: Optional[str] = None


class LoanPhotoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    url: str = Field(..., min_length=1)
    notes: Optional[str] = None


class CreateReviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Accept any number here; range and integrality are checked by the review policy.
    rating: Union[int, float]
    comment: Optional[str] = None


ReservationRole = Literal["borrower", "lender", "all"]
