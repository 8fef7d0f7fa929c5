from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID
from typing import List, Optional, Union

class SubjectCreateRequest(BaseModel):
    """Request model for creating a subject."""
    name: str = Field(..., min_length=1, description="Display name, e.g. 'Algorithms'.")
    course_code: str = Field(..., min_length=1, description="Unique course code, e.g. 'CS301'.")

class SubjectResponse(BaseModel):
    subject_id: UUID
    name: str
    course_code: str
    admin_id: UUID

    model_config = ConfigDict(from_attributes=True)

class StudentReference(BaseModel):
    roll_number: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, description="If given, must match the stored name (case-insensitive).")

class EnrollStudentsRequest(BaseModel):
    """Students are roll numbers or {roll_number, name} objects."""
    students: List[Union[str, StudentReference]] = Field(..., min_length=1)
    subject_ids: List[UUID] = Field(..., min_length=1)

    def student_pairs(self):
        """Normalises every entry to a (roll_number, name) tuple."""
        pairs = []
        for entry in self.students:
            if isinstance(entry, str):
                pairs.append((entry.strip(), None))
            else:
                pairs.append((entry.roll_number.strip(), entry.name))
        return pairs
