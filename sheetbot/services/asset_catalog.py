from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml

from sheetbot.logging_config import get_logger

logger = get_logger("asset_catalog")

MIN_EXTERNAL_ID_LENGTH = 10
# Unfilled catalog entries ship as TU_ID_<AREA>.
PLACEHOLDER_ID_PREFIX = "TU_ID_"
DRIVE_DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={external_id}"


@dataclass(frozen=True)
class AssetDescriptor:
    key: str
    external_id: str
    filename: str
    caption: str
    mimetype: str = "application/pdf"

    @property
    def download_url(self) -> str:
        return DRIVE_DOWNLOAD_URL.format(external_id=self.external_id)


@dataclass(frozen=True)
class AssetCheck:
    ok: bool
    reason: Optional[str] = None


def validate(descriptor: AssetDescriptor) -> AssetCheck:
    """Delivery-time sanity check of a descriptor."""
    external_id = (descriptor.external_id or "").strip()
    if not external_id:
        return AssetCheck(ok=False, reason="external id is empty")
    if external_id.upper().startswith(PLACEHOLDER_ID_PREFIX):
        return AssetCheck(ok=False, reason="external id is still a placeholder")
    if len(external_id) < MIN_EXTERNAL_ID_LENGTH:
        return AssetCheck(ok=False, reason=f"external id shorter than {MIN_EXTERNAL_ID_LENGTH} characters")
    return AssetCheck(ok=True)


class AssetCatalog:
    """Immutable, ordered mapping area name -> asset descriptor.

    Order matters: when a message names several areas the first key wins.
    """

    def __init__(self, descriptors: Iterable[AssetDescriptor]):
        self._items: Dict[str, AssetDescriptor] = {}
        for descriptor in descriptors:
            key = descriptor.key.strip().casefold()
            if key in self._items:
                logger.warning(f"Duplicate asset key ignored: {key}")
                continue
            self._items[key] = descriptor

    def keys(self) -> List[str]:
        return list(self._items.keys())

    def resolve(self, key: str) -> Optional[AssetDescriptor]:
        return self._items.get((key or "").strip().casefold())

    def validate(self, descriptor: AssetDescriptor) -> AssetCheck:
        return validate(descriptor)

    def __len__(self) -> int:
        return len(self._items)


def default_catalog() -> AssetCatalog:
    return AssetCatalog(
        [
            AssetDescriptor(
                key="contable",
                external_id="184wOk8NESI1YOMxHyq7kVO6_RA39xPgM",
                filename="brochure-contable.pdf",
                caption="📊 Aquí tienes el brochure del área Contable.",
            ),
            AssetDescriptor(
                key="legal",
                external_id="1gXgh7ugCEC3l4JvbadhrPiwQMDZCuTvB",
                filename="brochure-legal.pdf",
                caption="⚖️ Aquí tienes el brochure del área Legal.",
            ),
            AssetDescriptor(
                key="branding",
                external_id="TU_ID_BRANDING",
                filename="brochure-branding.pdf",
                caption="🎨 Aquí tienes el brochure del área de Branding.",
            ),
            AssetDescriptor(
                key="página web",
                external_id="TU_ID_WEB",
                filename="brochure-pagina-web.pdf",
                caption="💻 Aquí tienes el brochure del servicio de Página Web (TI).",
            ),
            AssetDescriptor(
                key="gestión humana",
                external_id="TU_ID_GH",
                filename="brochure-gestion-humana.pdf",
                caption="👥 Aquí tienes el brochure del área de Gestión Humana.",
            ),
        ]
    )


def load_catalog(path: Path) -> AssetCatalog:
    """Load an ordered catalog from YAML.

    Expected shape::

        legal:
          id: 1gXgh7ugCEC3l4JvbadhrPiwQMDZCuTvB
          filename: brochure-legal.pdf
          caption: Aquí tienes el brochure del área Legal.
    """
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Asset catalog {path} must be a mapping")

    descriptors = []
    for key, item in data.items():
        item = item or {}
        # Incomplete entries load fine and fail validation at delivery time.
        descriptors.append(
            AssetDescriptor(
                key=str(key),
                external_id=str(item.get("id") or ""),
                filename=str(item.get("filename") or f"{key}.pdf"),
                caption=str(item.get("caption") or ""),
                mimetype=str(item.get("mimetype") or "application/pdf"),
            )
        )
    logger.info(f"Loaded {len(descriptors)} assets from {path}")
    return AssetCatalog(descriptors)
