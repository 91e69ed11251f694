"""
Tests for the vendor example stores and the business registry wrappers.
"""
from __future__ import annotations

import asyncio
import json

import pytest

from core.exceptions import ExampleStoreError, RegistryLookupError
from core.models import DocumentType, RegistryEntry, VendorExample
from services.example_store import InMemoryVendorExampleStore, JsonFileVendorExampleStore
from services.registry_service import InMemoryBusinessRegistry, RegistryLookupService


def _example(total: str, vat: str = "BE0123456789", tenant: str = "tenant-1") -> VendorExample:
    return VendorExample(
        tenant_id=tenant,
        document_type=DocumentType.INVOICE,
        vendor_vat=vat,
        vendor_name="Acme Consulting BV",
        payload={"vendorName": "Acme Consulting BV", "totalAmount": total},
        confidence=0.95,
        created_at="2024-01-15T10:00:00+00:00",
    )


def test_in_memory_store_returns_latest_per_key() -> None:
    store = InMemoryVendorExampleStore()

    async def run():
        await store.save(_example("100.00"))
        await store.save(_example("200.00", vat="BE 0123.456.789"))
        await store.save(_example("300.00", tenant="tenant-2"))
        return (
            await store.find("tenant-1", DocumentType.INVOICE, "BE0123456789"),
            await store.find("tenant-1", DocumentType.BILL, "BE0123456789"),
            await store.find("tenant-1", DocumentType.INVOICE, None),
        )

    latest, other_type, no_vat = asyncio.run(run())
    assert latest.payload["totalAmount"] == "200.00"
    assert other_type is None
    assert no_vat is None
    assert len(store) == 3


def test_json_file_store_round_trip(tmp_path) -> None:
    store = JsonFileVendorExampleStore(tmp_path / "examples")

    async def run():
        await store.save(_example("100.00"))
        await store.save(_example("200.00"))
        return await store.find("tenant-1", DocumentType.INVOICE, "BE0123456789")

    found = asyncio.run(run())
    assert found == _example("200.00")
    [path] = (tmp_path / "examples").glob("*.json")
    assert len(json.loads(path.read_text(encoding="utf-8"))["examples"]) == 2


def test_json_file_store_ignores_corrupt_file(tmp_path) -> None:
    store = JsonFileVendorExampleStore(tmp_path)
    asyncio.run(store.save(_example("100.00")))
    [path] = tmp_path.glob("*.json")
    path.write_text("{not json", encoding="utf-8")
    assert asyncio.run(store.find("tenant-1", DocumentType.INVOICE, "BE0123456789")) is None


def test_json_file_store_write_failure(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = JsonFileVendorExampleStore(blocker / "examples")
    with pytest.raises(ExampleStoreError):
        asyncio.run(store.save(_example("100.00")))


def test_registry_lookup_by_vat_then_name() -> None:
    registry = InMemoryBusinessRegistry([RegistryEntry("BE0123456789", "Acme Consulting BV")])

    async def run():
        return (
            await registry.lookup_company(vat_number="0123.456.789"),
            await registry.lookup_company(name="ACME CONSULTING"),
            await registry.lookup_company(vat_number="BE0999999999", name="Acme Consulting BV"),
            await registry.lookup_company(),
        )

    by_vat, by_name, wrong_vat, nothing = asyncio.run(run())
    assert by_vat.name == "Acme Consulting BV"
    assert by_name is by_vat
    assert wrong_vat is None
    assert nothing is None


def test_lookup_service_disabled_without_registry() -> None:
    service = RegistryLookupService()
    assert not service.enabled
    assert asyncio.run(service.lookup("BE0123456789", "Acme")) is None


def test_lookup_service_outage_is_a_miss() -> None:
    class DownRegistry(InMemoryBusinessRegistry):
        async def lookup_company(self, vat_number=None, name=None):
            raise RegistryLookupError("registry timed out")

    lookup = asyncio.run(RegistryLookupService(DownRegistry()).lookup("BE0123456789", "Acme"))
    assert lookup.vat_number == "BE0123456789"
    assert not lookup.found


def test_lookup_service_without_identifiers() -> None:
    lookup = asyncio.run(RegistryLookupService(InMemoryBusinessRegistry()).lookup(None, None))
    assert lookup.entry is None
