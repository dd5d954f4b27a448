from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence


DEFAULT_LOCALE = "en"

ADMIN_LABELS: Dict[str, Dict[str, str]] = {
    "en": {
        "admin.title": "Admin",
        "admin.projects": "Projects",
        "admin.pages": "Pages",
        "admin.translations": "Translations",
        "admin.logout": "Log out",
        "admin.save": "Save",
        "admin.slug": "Slug",
        "admin.status": "Status",
        "admin.published": "Published",
        "admin.draft": "Draft",
        "admin.locale": "Locale",
        "admin.name": "Name",
        "admin.description": "Description",
        "admin.heroTitle": "Hero title",
        "admin.heading": "Heading",
        "admin.body": "Body",
        "admin.tech": "Tech",
        "admin.link": "Link",
        "admin.missing": "Missing",
        "admin.translationInfo": "Each project keeps one translation per locale. Missing locales are listed below.",
    },
    "tr": {
        "admin.title": "Yönetim",
        "admin.projects": "Projeler",
        "admin.pages": "Sayfalar",
        "admin.translations": "Çeviriler",
        "admin.logout": "Çıkış yap",
        "admin.save": "Kaydet",
        "admin.slug": "Kısa ad",
        "admin.status": "Durum",
        "admin.published": "Yayında",
        "admin.draft": "Taslak",
        "admin.locale": "Dil",
        "admin.name": "Ad",
        "admin.description": "Açıklama",
        "admin.heroTitle": "Başlık",
        "admin.heading": "Başlık",
        "admin.body": "İçerik",
        "admin.tech": "Teknoloji",
        "admin.link": "Bağlantı",
        "admin.missing": "Eksik",
        "admin.translationInfo": "Her proje her dil için bir çeviri tutar. Eksik diller aşağıda listelenir.",
    },
    "de": {
        "admin.title": "Verwaltung",
        "admin.projects": "Projekte",
        "admin.pages": "Seiten",
        "admin.translations": "Übersetzungen",
        "admin.logout": "Abmelden",
        "admin.save": "Speichern",
        "admin.slug": "Kurzname",
        "admin.status": "Status",
        "admin.published": "Veröffentlicht",
        "admin.draft": "Entwurf",
        "admin.locale": "Sprache",
        "admin.name": "Name",
        "admin.description": "Beschreibung",
        "admin.heroTitle": "Titel",
        "admin.heading": "Überschrift",
        "admin.body": "Inhalt",
        "admin.tech": "Technik",
        "admin.link": "Link",
        "admin.missing": "Fehlt",
        "admin.translationInfo": "Jedes Projekt hat eine Übersetzung pro Sprache. Fehlende Sprachen sind unten aufgeführt.",
    },
}


def resolve_locale(requested: Optional[str], supported: Sequence[str], default: str) -> str:
    value = (requested or "").strip().lower()
    return value if value in supported else default


def translate(locale: str, key: str) -> str:
    labels = ADMIN_LABELS.get(locale) or ADMIN_LABELS[DEFAULT_LOCALE]
    value = labels.get(key)
    if value:
        return value
    return ADMIN_LABELS[DEFAULT_LOCALE].get(key, key)


def create_translator(locale: str) -> Callable[[str], str]:
    return lambda key: translate(locale, key)
