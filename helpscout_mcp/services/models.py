"""Pydantic models for the Help Scout HAL pagination envelope."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PageInfo(BaseModel):
    size: int = 0
    total_elements: int = Field(0, alias="totalElements")
    total_pages: int = Field(0, alias="totalPages")
    number: int = 1

    model_config = ConfigDict(populate_by_name=True)


class PaginatedResponse(BaseModel):
    """A list endpoint response: ``{_embedded: {<key>: [...]}, _links, page}``."""

    embedded: dict[str, list[dict[str, Any]]] = Field(default_factory=dict, alias="_embedded")
    links: dict[str, Any] = Field(default_factory=dict, alias="_links")
    page: PageInfo | None = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def items(self, key: str) -> list[dict[str, Any]]:
        return self.embedded.get(key, [])

    @property
    def next_url(self) -> str | None:
        link = self.links.get("next")
        return link.get("href") if isinstance(link, dict) else None

    @property
    def has_next(self) -> bool:
        if self.next_url:
            return True
        return self.page is not None and self.page.number < self.page.total_pages
