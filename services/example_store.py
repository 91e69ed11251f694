"""
Vendor example stores: approved extractions kept as few-shot hints for later documents
from the same vendor. Key: (tenant, document type, vendor VAT). Append-only; find returns
the most recent example.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from core.exceptions import ExampleStoreError
from core.interfaces import IVendorExampleStore
from core.models import DocumentType, VendorExample
from validation.checksums import normalize_vat_number

logger = logging.getLogger(__name__)


def _example_key(tenant_id: str, document_type: DocumentType, vendor_vat: str | None) -> str:
    """Stable key for tenant + type + normalized vendor VAT."""
    raw = f"{tenant_id}\n{document_type.value}\n{normalize_vat_number(vendor_vat) or ''}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class InMemoryVendorExampleStore(IVendorExampleStore):
    """Process-local store. Useful for tests and single-process deployments."""

    def __init__(self) -> None:
        self._examples: dict[str, list[VendorExample]] = {}

    async def find(
        self,
        tenant_id: str,
        document_type: DocumentType,
        vendor_vat: str | None = None,
    ) -> VendorExample | None:
        if not vendor_vat:
            return None
        examples = self._examples.get(_example_key(tenant_id, document_type, vendor_vat))
        return examples[-1] if examples else None

    async def save(self, example: VendorExample) -> None:
        key = _example_key(example.tenant_id, example.document_type, example.vendor_vat)
        self._examples.setdefault(key, []).append(example)

    def __len__(self) -> int:
        return sum(len(v) for v in self._examples.values())


class JsonFileVendorExampleStore(IVendorExampleStore):
    """
    One JSON file per key under store_dir, holding every example saved for it.
    File IO runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, store_dir: str | Path) -> None:
        self._dir = Path(store_dir)

    def _path(self, tenant_id: str, document_type: DocumentType, vendor_vat: str | None) -> Path:
        return self._dir / f"{_example_key(tenant_id, document_type, vendor_vat)}.json"

    def _read(self, path: Path) -> list[VendorExample]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return [VendorExample.from_dict(d) for d in data.get("examples", [])]
        except (OSError, json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.debug("Example store read failed for %s: %s", path, e)
            return []

    def _append(self, example: VendorExample) -> None:
        path = self._path(example.tenant_id, example.document_type, example.vendor_vat)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            examples = self._read(path)
            examples.append(example)
            payload = {"examples": [e.to_dict() for e in examples]}
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise ExampleStoreError(f"Could not write example to {path}: {e}") from e
        logger.debug("Example stored at %s", path)

    async def find(
        self,
        tenant_id: str,
        document_type: DocumentType,
        vendor_vat: str | None = None,
    ) -> VendorExample | None:
        if not vendor_vat:
            return None
        examples = await asyncio.to_thread(self._read, self._path(tenant_id, document_type, vendor_vat))
        return examples[-1] if examples else None

    async def save(self, example: VendorExample) -> None:
        await asyncio.to_thread(self._append, example)
