"""Filesystem side of the CT-e lifecycle: key parsing, relocation, inspection."""

from __future__ import annotations

import logging
from typing import Optional

from anyio import Path

from .errors import ArtifactMissingError, MalformedKeyError

logger = logging.getLogger(__name__)

ACCESS_KEY_LENGTH = 44
CNPJ_OFFSET = 6
CNPJ_LENGTH = 14

AUTHORIZATION_MARKERS = ("<cStat>100</cStat>", "autorizado", "Autorizado")


def derive_sub_identifier(access_key: Optional[str]) -> str:
    """Return the issuer CNPJ embedded in a CT-e access key.

    The key must be exactly 44 characters; characters 6..19 are the CNPJ
    and must all be digits.

    Raises:
        MalformedKeyError: If either condition does not hold.
    """
    if not access_key or len(access_key) != ACCESS_KEY_LENGTH:
        raise MalformedKeyError(
            access_key, f"expected {ACCESS_KEY_LENGTH} characters"
        )
    cnpj = access_key[CNPJ_OFFSET : CNPJ_OFFSET + CNPJ_LENGTH]
    if not (cnpj.isascii() and cnpj.isdigit()):
        raise MalformedKeyError(access_key, f"CNPJ slice {cnpj!r} is not numeric")
    return cnpj


def artifact_name(access_key: str) -> str:
    return f"{access_key}.xml"


def is_authorized(content: str) -> bool:
    """Loose check for an authorization marker in a processed XML."""
    return any(marker in content for marker in AUTHORIZATION_MARKERS)


async def relocate_artifact(
    source_folder: str,
    cnpj_base_path: str,
    processed_folder: str,
    access_key: str,
    cnpj: str,
) -> Path:
    """Move ``<source>/<key>.xml`` into ``<base>/<cnpj>/``.

    Creates the CNPJ folder and its processed subfolder when absent.

    Raises:
        ArtifactMissingError: If the source XML does not exist.
    """
    file_name = artifact_name(access_key)
    source_path = Path(source_folder) / file_name
    if not await source_path.exists():
        raise ArtifactMissingError(str(source_path))

    cnpj_folder = Path(cnpj_base_path) / cnpj
    await cnpj_folder.mkdir(parents=True, exist_ok=True)
    await (cnpj_folder / processed_folder).mkdir(parents=True, exist_ok=True)

    target_path = cnpj_folder / file_name
    await source_path.rename(target_path)
    logger.info(f"XML moved to CNPJ folder: {target_path}")
    return target_path


def processed_artifact_path(
    cnpj_base_path: str, processed_folder: str, access_key: str, cnpj: str
) -> str:
    return str(Path(cnpj_base_path) / cnpj / processed_folder / artifact_name(access_key))


async def read_authorization(path: str) -> Optional[bool]:
    """Return ``None`` if ``path`` is absent, else whether it is authorized."""
    artifact = Path(path)
    if not await artifact.exists():
        return None
    content = await artifact.read_text(encoding="utf-8", errors="replace")
    return is_authorized(content)
