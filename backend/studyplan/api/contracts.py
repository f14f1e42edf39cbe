from pydantic import BaseModel, ConfigDict, Field


class PlanningRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=255)
    subjects: list[str]
    structured: bool = False
    source_path: str | None = Field(default=None, alias="sourcePath")


class SummarizeRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=255)
    subjects: list[str]
    structured: bool = False


class SignedUrlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., min_length=1, max_length=512, alias="fileName")
    content_type: str = Field(..., min_length=1, max_length=255, alias="contentType")
