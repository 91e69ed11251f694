"""
Business registry access for the audit stage.
RegistryLookupService turns a registry miss or a registry outage into the same
"not found" lookup, so the audit reports a warning instead of the run failing.
"""

from __future__ import annotations

import logging
from typing import Iterable

from core.interfaces import IBusinessRegistry
from core.models import CompanyLookup, RegistryEntry
from decision.audit_engine import normalize_company_name
from validation.checksums import normalize_vat_number

logger = logging.getLogger(__name__)


class InMemoryBusinessRegistry(IBusinessRegistry):
    """Registry backed by a fixed list of entries (tests, demos, offline runs)."""

    def __init__(self, entries: Iterable[RegistryEntry] = ()) -> None:
        self._by_vat: dict[str, RegistryEntry] = {}
        self._by_name: dict[str, RegistryEntry] = {}
        for entry in entries:
            self.add(entry)

    def add(self, entry: RegistryEntry) -> None:
        vat = normalize_vat_number(entry.vat_number)
        if vat:
            self._by_vat[vat] = entry
        self._by_name[normalize_company_name(entry.name)] = entry

    async def lookup_company(
        self,
        vat_number: str | None = None,
        name: str | None = None,
    ) -> RegistryEntry | None:
        vat = normalize_vat_number(vat_number)
        if vat:
            return self._by_vat.get(vat)
        if name:
            return self._by_name.get(normalize_company_name(name))
        return None


class RegistryLookupService:
    """Wraps an optional registry. None registry means company checks are not run."""

    def __init__(self, registry: IBusinessRegistry | None = None) -> None:
        self._registry = registry

    @property
    def enabled(self) -> bool:
        return self._registry is not None

    async def lookup(
        self,
        vat_number: str | None,
        name: str | None,
        *,
        trace_id: str = "",
    ) -> CompanyLookup | None:
        if self._registry is None:
            return None
        if not vat_number and not name:
            return CompanyLookup(vat_number, name)
        try:
            entry = await self._registry.lookup_company(vat_number=vat_number, name=name)
        except Exception as e:
            logger.warning("Registry lookup failed trace_id=%s vat=%s: %s", trace_id, vat_number, e)
            entry = None
        return CompanyLookup(vat_number, name, entry)
