# FILE: regalpaket/models/manifests.py
"""
Manifest models
"""
from datetime import datetime
from typing import List
from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = ["FORMAT_VERSION", "PageRef", "Manifest"]

# Only supported container format version
FORMAT_VERSION = 1


class PageRef(BaseModel):
    """Page index entry"""
    model_config = ConfigDict(populate_by_name=True)

    page_number: int = Field(alias="page")
    image_entry_name: str = Field(alias="file")

    @field_validator("image_entry_name")
    @classmethod
    def resolve_legacy_name(cls, v: str) -> str:
        # Older packages store the file name relative to pages/
        if "/" not in v:
            return f"pages/{v}"
        return v


class Manifest(BaseModel):
    """Container manifest schema"""
    model_config = ConfigDict(populate_by_name=True)

    format_version: int = Field(alias="version")
    title: str = Field(alias="name")
    created_at: datetime = Field(alias="created")
    page_count: int = Field(alias="pageCount")
    original_entry_name: str = Field(alias="originalFile")
    page_index: List[PageRef] = Field(alias="pages")

    def image_entry_for(self, page_number: int) -> str:
        """Image entry name for a page (caller checks the range first)"""
        return self.page_index[page_number - 1].image_entry_name
