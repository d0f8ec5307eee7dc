from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class CreateLoanDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    equipmentId: str
    purpose: str
    preferredStartDate: datetime
    preferredEndDate: datetime
    expectedReturnDate: Optional[datetime] = None
    notes: Optional[str] = None


class RejectLoanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: Optional[str] = None


class ReturnRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notes: Optional[str] = None


class ProcessReturnDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    equipmentConditionOnReturn: Optional[str] = None
    equipmentConditionNotes: Optional[str] = None
    returnNotes: Optional[str] = None
    requiresMaintenance: bool = False


class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    startDate: date
    endDate: date
