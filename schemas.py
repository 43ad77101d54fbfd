from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from form_config import DEFAULT_SUBMIT_TEXT, DEFAULT_SUCCESS_MESSAGE

FieldType = Literal[
    "text", "email", "number", "textarea", "select", "checkbox", "radio", "date", "file"
]
AnswerValue = Union[bool, int, float, str, List[str]]


# ---------- 1) Form schema ----------

class FormField(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: FieldType = "text"
    required: bool = True
    placeholder: Optional[str] = None
    options: Optional[List[str]] = None


class FormSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    description: Optional[str] = None
    fields: List[FormField] = Field(min_length=1)
    submit_text: str = Field(default=DEFAULT_SUBMIT_TEXT, alias="submitText")
    success_message: str = Field(default=DEFAULT_SUCCESS_MESSAGE, alias="successMessage")

    @field_validator("fields")
    @classmethod
    def unique_field_ids(cls, fields: List[FormField]) -> List[FormField]:
        seen = set()
        for f in fields:
            if f.id in seen:
                raise ValueError(f"duplicate field id '{f.id}'")
            seen.add(f.id)
        return fields

    def field_by_id(self, field_id: str) -> Optional[FormField]:
        return next((f for f in self.fields if f.id == field_id), None)

    def to_json(self) -> Dict[str, Any]:
        # camelCase keys, the shape stored in forms.schema_json
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------- 2) Form creation chat ----------

class CreateFormRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    session_id: Optional[int] = Field(default=None, alias="sessionId")


class UpdateFormRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    form_schema: FormSchema = Field(alias="schema")


# ---------- 3) Conversational form filling ----------

class ChatProgress(BaseModel):
    asked: List[str] = Field(default_factory=list)
    pending: List[str] = Field(default_factory=list)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[int] = Field(default=None, alias="sessionId")
    message: str = ""
    # validated by the route so a missing schema is a 400, not a 422
    form_schema: Optional[Dict[str, Any]] = Field(default=None, alias="schema")
    answers: Dict[str, Any] = Field(default_factory=dict)
    progress: Optional[ChatProgress] = None


class ExtractedValue(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field_id: str = Field(alias="fieldId")
    value: AnswerValue


class NextField(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field_id: str = Field(alias="fieldId")
    prompt: str


class FormResponseAction(BaseModel):
    """What the model returns for one filling turn (the processFormResponse tool)."""

    model_config = ConfigDict(populate_by_name=True)

    assistant: str = ""
    extracted_values: List[ExtractedValue] = Field(default_factory=list, alias="extractedValues")
    next_field: Optional[NextField] = Field(default=None, alias="nextField")
    complete: bool = False

    @field_validator("extracted_values", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or []


class AnswerCheckRequest(BaseModel):
    value: str = ""


class SpeechRequest(BaseModel):
    text: str = ""
    language: str = "en"


# ---------- 4) Submissions ----------

class SubmissionOut(BaseModel):
    id: int
    data: Dict[str, Any]
    submittedAt: Optional[datetime] = None
    ipAddress: Optional[str] = None


class ResponsesOut(BaseModel):
    responses: List[SubmissionOut]
    form: Dict[str, Any]


# ---------- 5) Analytics ----------

class SentimentAnalysis(BaseModel):
    totalResponses: int = 0
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    averageScore: float = 0.0


class PopularForm(BaseModel):
    id: int
    slug: str
    title: str
    createdAt: Optional[datetime] = None
    submissionCount: int
