"""Task executor tests."""

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import (
    AUTHORIZED_XML,
    CNPJ_A,
    KEY_A,
    REJECTED_XML,
    write_processed,
    write_source,
)
from ctemonitor.contracts import Record, WatchEntry, utcnow
from ctemonitor.errors import UpdateError
from ctemonitor.execute import TaskExecutor
from ctemonitor.store import InMemoryRecordStore


def _pending(record_id=7, key=KEY_A) -> Record:
    return Record(id=record_id, numero_cte=key, status="pendente")


@pytest.mark.asyncio
async def test_pending_record_is_relocated_and_watched(config, retry_delays):
    """One run moves the XML and registers a watch entry without completing."""
    store = InMemoryRecordStore([_pending()])
    executor = TaskExecutor(store, config)
    write_source(config, KEY_A)

    result = await executor.execute_task(_pending())

    try:
        assert result.success
        assert result.record_id == 7
        base = Path(config.xml_processing.cnpj_base_path) / CNPJ_A
        assert (base / f"{KEY_A}.xml").exists()
        assert (base / "processados").is_dir()
        assert not (Path(config.xml_processing.source_folder) / f"{KEY_A}.xml").exists()

        entry = executor.registry.get(7)
        assert entry is not None
        assert entry.derived_key == CNPJ_A
        assert entry.expected_artifact_path == str(base / "processados" / f"{KEY_A}.xml")
        assert store.completed_calls == []
        assert executor.watching
        assert retry_delays == []
    finally:
        executor.cleanup()


@pytest.mark.asyncio
async def test_authorized_processed_file_marks_completed_once(config, retry_delays):
    store = InMemoryRecordStore([_pending()])
    executor = TaskExecutor(store, config)
    write_source(config, KEY_A)
    await executor.execute_task(_pending())

    write_processed(config, KEY_A, CNPJ_A, AUTHORIZED_XML)
    await executor.check_processed_files()
    await executor.check_processed_files()

    try:
        assert store.completed_calls == [7]
        assert 7 not in executor.registry
        assert store.get(7).status == "emitido"
    finally:
        executor.cleanup()


@pytest.mark.asyncio
async def test_latin1_processed_file_marks_completed(config, retry_delays):
    store = InMemoryRecordStore([_pending()])
    executor = TaskExecutor(store, config)
    write_source(config, KEY_A)
    await executor.execute_task(_pending())

    path = write_processed(config, KEY_A, CNPJ_A, "")
    path.write_bytes(
        "<cStat>100</cStat><xMotivo>Autorização</xMotivo>".encode("latin-1")
    )
    await executor.check_processed_files()

    try:
        assert store.completed_calls == [7]
        assert 7 not in executor.registry
    finally:
        executor.cleanup()


@pytest.mark.asyncio
async def test_entry_registered_during_completion_is_kept(config, retry_delays):
    class ReRegisteringStore(InMemoryRecordStore):
        replacement = None

        async def mark_completed(self, record_id):
            result = await super().mark_completed(record_id)
            self.replacement = WatchEntry(
                record_id=record_id,
                external_key=KEY_A,
                derived_key=CNPJ_A,
                expected_artifact_path=str(
                    Path(config.xml_processing.cnpj_base_path) / "later.xml"
                ),
            )
            executor.registry.register(self.replacement)
            return result

    store = ReRegisteringStore([_pending()])
    executor = TaskExecutor(store, config)
    write_source(config, KEY_A)
    await executor.execute_task(_pending())
    write_processed(config, KEY_A, CNPJ_A, AUTHORIZED_XML)

    await executor.check_processed_files()

    try:
        assert store.completed_calls == [7]
        assert executor.registry.get(7) is store.replacement
    finally:
        executor.cleanup()


@pytest.mark.asyncio
async def test_unauthorized_processed_file_stays_watched(config, retry_delays):
    store = InMemoryRecordStore([_pending()])
    executor = TaskExecutor(store, config)
    write_source(config, KEY_A)
    await executor.execute_task(_pending())

    write_processed(config, KEY_A, CNPJ_A, REJECTED_XML)
    await executor.check_processed_files()

    try:
        assert store.completed_calls == []
        assert 7 in executor.registry
    finally:
        executor.cleanup()


@pytest.mark.asyncio
async def test_missing_processed_file_times_out_silently(config):
    store = InMemoryRecordStore([_pending()])
    executor = TaskExecutor(store, config)
    timeout = config.xml_processing.processing_timeout
    executor.registry.register(
        WatchEntry(
            record_id=7,
            external_key=KEY_A,
            derived_key=CNPJ_A,
            expected_artifact_path=str(Path(config.xml_processing.cnpj_base_path) / "nope.xml"),
            registered_at=utcnow() - timedelta(milliseconds=timeout + 1000),
        )
    )

    await executor.check_processed_files()

    assert 7 not in executor.registry
    assert store.completed_calls == []
    assert [e.record_id for e in executor.get_processing_stats().timed_out] == [7]


@pytest.mark.asyncio
async def test_missing_processed_file_within_timeout_is_kept(config):
    executor = TaskExecutor(InMemoryRecordStore(), config)
    executor.registry.register(
        WatchEntry(
            record_id=7,
            external_key=KEY_A,
            derived_key=CNPJ_A,
            expected_artifact_path=str(Path(config.xml_processing.cnpj_base_path) / "nope.xml"),
        )
    )

    await executor.check_processed_files()

    assert 7 in executor.registry
    assert executor.get_processing_stats().timed_out == []


@pytest.mark.asyncio
async def test_store_error_during_scan_keeps_entry(config, retry_delays):
    class FailingStore(InMemoryRecordStore):
        async def mark_completed(self, record_id):
            raise UpdateError("boom", status_code=500, body="boom")

    store = FailingStore([_pending()])
    executor = TaskExecutor(store, config)
    write_source(config, KEY_A)
    await executor.execute_task(_pending())
    write_processed(config, KEY_A, CNPJ_A, AUTHORIZED_XML)

    await executor.check_processed_files()

    try:
        assert 7 in executor.registry
    finally:
        executor.cleanup()


@pytest.mark.asyncio
async def test_missing_artifact_retries_up_to_ceiling(config, retry_delays):
    config.tasks.retry_attempts = 3
    config.tasks.retry_delay = 2000
    executor = TaskExecutor(InMemoryRecordStore(), config)

    result = await executor.execute_task(_pending())

    assert not result.success
    assert result.attempts == 3
    assert "not found" in result.error
    assert retry_delays == [2000, 2000]
    assert executor.retry_count(7) == 0
    assert executor.active_task_count == 0


@pytest.mark.asyncio
async def test_artifact_appearing_between_attempts_succeeds(config, monkeypatch):
    executor = TaskExecutor(InMemoryRecordStore(), config)
    waits = []

    async def _fake_retry(delay_ms):
        waits.append(delay_ms)
        write_source(config, KEY_A)

    monkeypatch.setattr("ctemonitor.execute.schedule_retry", _fake_retry)

    result = await executor.execute_task(_pending())

    try:
        assert result.success
        assert result.attempts == 2
        assert len(waits) == 1
        assert executor.retry_count(7) == 0
    finally:
        executor.cleanup()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "key",
    [
        None,
        "",
        KEY_A[:-1],
        KEY_A + "9",
        KEY_A[:6] + "0000000000019X" + KEY_A[20:],
    ],
)
async def test_malformed_key_is_not_retried(config, retry_delays, key):
    executor = TaskExecutor(InMemoryRecordStore(), config)
    if key:
        write_source(config, key)

    result = await executor.execute_task(_pending(key=key))

    assert not result.success
    assert result.attempts == 1
    assert "Malformed access key" in result.error
    assert retry_delays == []
    assert list(Path(config.xml_processing.cnpj_base_path).iterdir()) == []
    assert len(executor.registry) == 0


@pytest.mark.asyncio
async def test_unknown_status_is_a_noop_success(config, retry_delays):
    executor = TaskExecutor(InMemoryRecordStore(), config)
    write_source(config, KEY_A)

    result = await executor.execute_task(
        Record(id=3, numero_cte=KEY_A, status="cancelado")
    )

    assert result.success
    assert (Path(config.xml_processing.source_folder) / f"{KEY_A}.xml").exists()
    assert len(executor.registry) == 0


@pytest.mark.asyncio
async def test_watch_loop_start_is_idempotent(config):
    executor = TaskExecutor(InMemoryRecordStore(), config)

    executor.start_processed_file_monitoring()
    executor.start_processed_file_monitoring()
    await asyncio.sleep(0)

    try:
        timers = [
            t for t in asyncio.all_tasks()
            if t.get_name() == "processed-files-timer" and not t.done()
        ]
        assert len(timers) == 1
    finally:
        executor.stop_processed_file_monitoring()
    assert not executor.watching


@pytest.mark.asyncio
async def test_reregistering_same_record_overwrites_entry(config, retry_delays):
    executor = TaskExecutor(InMemoryRecordStore(), config)
    record = _pending()

    write_source(config, KEY_A)
    await executor.execute_task(record)
    first = executor.registry.get(7)
    write_source(config, KEY_A)
    await executor.execute_task(record)

    try:
        assert len(executor.registry) == 1
        assert executor.registry.get(7).registered_at >= first.registered_at
    finally:
        executor.cleanup()


@pytest.mark.asyncio
async def test_running_tasks_lists_waiting_files(config, retry_delays):
    executor = TaskExecutor(InMemoryRecordStore(), config)
    write_source(config, KEY_A)
    await executor.execute_task(_pending())

    tasks = executor.get_running_tasks()

    try:
        assert len(tasks) == 1
        assert tasks[0].task_id == "waiting_7"
        assert tasks[0].type == "waiting_processing"
        assert tasks[0].cnpj == CNPJ_A
        stats = executor.get_processing_stats()
        assert stats.files_waiting == 1
        assert stats.files[0].external_key == KEY_A
    finally:
        executor.cleanup()
    assert executor.get_running_tasks() == []


@pytest.mark.asyncio
async def test_setup_directories_creates_folders(tmp_path, config):
    config.xml_processing.source_folder = str(tmp_path / "a" / "src")
    config.xml_processing.cnpj_base_path = str(tmp_path / "b" / "cnpj")
    executor = TaskExecutor(InMemoryRecordStore(), config)

    await executor.setup_directories()

    assert (tmp_path / "a" / "src").is_dir()
    assert (tmp_path / "b" / "cnpj").is_dir()
