"""Shared fixtures for ctemonitor tests."""

from pathlib import Path
from typing import List

import pytest

from ctemonitor.config import CteMonitorConfig

# 44-character CT-e access keys; characters 6..19 hold the issuer CNPJ.
KEY_A = "35250600000000000199570010000012341000012345"
KEY_B = "35250612345678000190570010000000011000000015"
KEY_C = "35250612345678000190570010000000021000000025"
CNPJ_A = "00000000000199"
CNPJ_B = "12345678000190"

AUTHORIZED_XML = "<cteProc><protCTe><infProt><cStat>100</cStat></infProt></protCTe></cteProc>"
REJECTED_XML = "<cteProc><protCTe><infProt><cStat>204</cStat></infProt></protCTe></cteProc>"


@pytest.fixture
def config(tmp_path: Path) -> CteMonitorConfig:
    cfg = CteMonitorConfig()
    cfg.xml_processing.source_folder = str(tmp_path / "gerados")
    cfg.xml_processing.cnpj_base_path = str(tmp_path / "cnpj")
    cfg.logging.log_file = None
    cfg.monitor.restart_delay = 0
    Path(cfg.xml_processing.source_folder).mkdir(parents=True)
    Path(cfg.xml_processing.cnpj_base_path).mkdir(parents=True)
    return cfg


@pytest.fixture
def retry_delays(monkeypatch) -> List[int]:
    """Record retry waits instead of sleeping."""
    delays: List[int] = []

    async def _fake_retry(delay_ms: int) -> None:
        delays.append(delay_ms)

    monkeypatch.setattr("ctemonitor.execute.schedule_retry", _fake_retry)
    return delays


def write_source(config: CteMonitorConfig, key: str, content: str = "<CTe/>") -> Path:
    path = Path(config.xml_processing.source_folder) / f"{key}.xml"
    path.write_text(content)
    return path


def write_processed(
    config: CteMonitorConfig, key: str, cnpj: str, content: str
) -> Path:
    folder = (
        Path(config.xml_processing.cnpj_base_path)
        / cnpj
        / config.xml_processing.processed_folder
    )
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{key}.xml"
    path.write_text(content)
    return path
