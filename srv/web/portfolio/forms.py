from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from .db import Page, PageSection, Project, ProjectTranslation
from .errors import FormValidationError


SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"
PROJECT_LOCALIZED_FIELDS = ("name", "description", "hero")
PAGE_LOCALIZED_FIELDS = ("heading", "body")
LocalizedText = Dict[str, str]


class ProjectSubmission(BaseModel):
    slug: str = Field(pattern=SLUG_PATTERN, max_length=120)
    status: Literal["published", "draft"] = "draft"
    tech: Optional[str] = Field(default=None, max_length=500)
    link: Optional[str] = Field(default=None, max_length=2000)
    name: LocalizedText = Field(default_factory=dict)
    description: LocalizedText = Field(default_factory=dict)
    hero: LocalizedText = Field(default_factory=dict)

    @field_validator("link")
    @classmethod
    def _link_is_http(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("link must be an http(s) URL")
        return value

    def to_records(self, locales: Sequence[str]) -> tuple[Project, List[ProjectTranslation]]:
        project = Project(slug=self.slug, status=self.status, tech=self.tech, link=self.link)
        translations = [
            ProjectTranslation(
                locale=locale,
                name=self.name.get(locale, ""),
                description=self.description.get(locale, ""),
                hero_title=self.hero.get(locale) or None,
            )
            for locale in locales
        ]
        return project, translations


class PageSubmission(BaseModel):
    slug: str = Field(pattern=SLUG_PATTERN, max_length=120)
    published: bool = True
    template: str = "generic"
    heading: LocalizedText = Field(default_factory=dict)
    body: LocalizedText = Field(default_factory=dict)

    def to_records(self, locales: Sequence[str]) -> tuple[Page, List[PageSection]]:
        page = Page(slug=self.slug, template=self.template, published=self.published)
        sections = [
            PageSection(
                locale=locale,
                heading=self.heading.get(locale, ""),
                body=self.body.get(locale, ""),
                position=index,
            )
            for index, locale in enumerate(locales)
        ]
        return page, sections


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def collect_localized(
    form: Mapping[str, Any],
    fields: Sequence[str],
    locales: Sequence[str],
) -> tuple[Dict[str, LocalizedText], List[Dict[str, str]]]:
    """Split ``<field>_<locale>`` inputs into per-field locale maps.

    Missing locales default to the empty string; suffixes outside ``locales``
    are reported as errors instead of being dropped.
    """
    values: Dict[str, LocalizedText] = {name: {locale: "" for locale in locales} for name in fields}
    errors: List[Dict[str, str]] = []
    for key in form.keys():
        prefix, sep, suffix = str(key).rpartition("_")
        if not sep or prefix not in fields:
            continue
        if suffix not in locales:
            errors.append({"field": str(key), "message": f"Unsupported locale: {suffix}"})
            continue
        values[prefix][suffix] = _clean(form.get(key))
    return values, errors


def _raise_for(exc: ValidationError, extra: List[Dict[str, str]]) -> None:
    errors = list(extra)
    for item in exc.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "form"
        errors.append({"field": loc, "message": str(item.get("msg", "invalid"))})
    raise FormValidationError(errors) from exc


def parse_project_form(form: Mapping[str, Any], locales: Sequence[str]) -> ProjectSubmission:
    localized, errors = collect_localized(form, PROJECT_LOCALIZED_FIELDS, locales)
    status = _clean(form.get("status"))
    try:
        submission = ProjectSubmission(
            slug=_clean(form.get("slug")),
            status="published" if status == "published" else "draft",
            tech=_clean(form.get("tech")) or None,
            link=_clean(form.get("link")) or None,
            **localized,
        )
    except ValidationError as exc:
        _raise_for(exc, errors)
    if errors:
        raise FormValidationError(errors)
    return submission


def parse_page_form(form: Mapping[str, Any], locales: Sequence[str]) -> PageSubmission:
    localized, errors = collect_localized(form, PAGE_LOCALIZED_FIELDS, locales)
    try:
        submission = PageSubmission(
            slug=_clean(form.get("slug")),
            published=_clean(form.get("published")) == "1",
            **localized,
        )
    except ValidationError as exc:
        _raise_for(exc, errors)
    if errors:
        raise FormValidationError(errors)
    return submission
