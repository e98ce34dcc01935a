"""
Data Validator Tests.

============================================================
PURPOSE
============================================================
Block gap detection and weekly audit-log reconciliation.

============================================================
"""

import asyncio
import hashlib
from datetime import datetime, timezone

import pytest
from sqlalchemy import update

from indexer.config import ValidationSettings
from indexer.validator import DataValidator, Gap, digest_rows, find_block_gaps
from storage.models import BurnEvent
from storage.repositories import BurnEventRepository, DiagnosticsRepository
from tests.fakes import ALICE, CHAIN_ID, MINTER


async def insert(database, tx, block, direct=80):
    async with database.transaction() as session:
        await BurnEventRepository(session).insert_event(
            chain_id=CHAIN_ID,
            transaction_hash=tx,
            block_number=block,
            log_index=0,
            block_timestamp=datetime(2026, 3, 1, tzinfo=timezone.utc),
            user_address=ALICE,
            contract_address=MINTER,
            event_type="XENBurned",
            xen_amount_direct=direct,
            xen_amount_accumulated=20,
        )


async def validations(database, validation_type):
    async with database.session() as session:
        return await DiagnosticsRepository(session).list_validations(CHAIN_ID, validation_type)


class TestFindBlockGaps:

    def test_single_gap(self):
        assert find_block_gaps([100, 101, 105, 106]) == [Gap(101, 105)]
        assert Gap(101, 105).size == 4

    def test_consecutive_blocks(self):
        assert find_block_gaps([1, 2, 3, 3, 4]) == []

    def test_large_jump_is_not_a_gap(self):
        assert find_block_gaps([100, 1100, 1102]) == [Gap(1100, 1102)]

    def test_jump_just_below_limit(self):
        assert find_block_gaps([0, 999], max_gap_size=1000) == [Gap(0, 999)]

    def test_unsorted_input(self):
        assert find_block_gaps([10, 5, 6]) == [Gap(6, 10)]


class TestDigestRows:

    def test_none_is_empty_field(self):
        rows = [("0x1", 5, ALICE, 80, None)]
        expected = f"0x1|5|{ALICE}|80|"

        assert digest_rows(rows) == hashlib.sha256(expected.encode()).hexdigest()

    def test_order_matters(self):
        a, b = ("0x1", 1, ALICE, 1, 1), ("0x2", 2, ALICE, 1, 1)

        assert digest_rows([a, b]) != digest_rows([b, a])


class TestDataValidator:

    @pytest.mark.asyncio
    async def test_gaps_are_recorded(self, seeded_database):
        for tx, block in (("0xa", 100), ("0xb", 101), ("0xc", 105), ("0xd", 106)):
            await insert(seeded_database, tx, block)
        validator = DataValidator(seeded_database)

        gaps = await validator.detect_block_gaps(CHAIN_ID)

        assert gaps == [Gap(101, 105)]
        async with seeded_database.session() as session:
            stored = await DiagnosticsRepository(session).list_gaps(CHAIN_ID)
        assert [(g.start_block, g.end_block, g.gap_size) for g in stored] == [(101, 105, 4)]
        runs = await validations(seeded_database, "block_gaps")
        assert runs[-1].status == "gaps_found"
        assert runs[-1].details["new_gaps"] == 1

    @pytest.mark.asyncio
    async def test_repeat_run_does_not_duplicate_gaps(self, seeded_database):
        await insert(seeded_database, "0xa", 100)
        await insert(seeded_database, "0xb", 110)
        validator = DataValidator(seeded_database)

        await validator.detect_block_gaps(CHAIN_ID)
        await validator.validate_daily(CHAIN_ID)

        runs = await validations(seeded_database, "block_gaps")
        assert [run.details["new_gaps"] for run in runs] == [1, 0]

    @pytest.mark.asyncio
    async def test_no_gaps(self, seeded_database):
        await insert(seeded_database, "0xa", 100)
        await insert(seeded_database, "0xb", 5000)

        assert await DataValidator(seeded_database).detect_block_gaps(CHAIN_ID) == []
        assert (await validations(seeded_database, "block_gaps"))[-1].status == "success"

    @pytest.mark.asyncio
    async def test_reconciliation_is_stable(self, seeded_database):
        await insert(seeded_database, "0xa", 100)
        validator = DataValidator(seeded_database)

        first = await validator.run_weekly_reconciliation(CHAIN_ID)
        second = await validator.run_weekly_reconciliation(CHAIN_ID)

        assert first == second
        assert len(first) == 64
        statuses = [run.status for run in await validations(seeded_database, "weekly_reconciliation")]
        assert statuses == ["success", "success"]

    @pytest.mark.asyncio
    async def test_new_rows_are_not_a_mismatch(self, seeded_database):
        await insert(seeded_database, "0xa", 100)
        validator = DataValidator(seeded_database)
        first = await validator.run_weekly_reconciliation(CHAIN_ID)

        await insert(seeded_database, "0xb", 101)
        second = await validator.run_weekly_reconciliation(CHAIN_ID)

        assert first != second
        assert (await validations(seeded_database, "weekly_reconciliation"))[-1].status == "success"

    @pytest.mark.asyncio
    async def test_rewritten_row_is_a_mismatch(self, seeded_database):
        await insert(seeded_database, "0xa", 100)
        validator = DataValidator(seeded_database)
        await validator.run_weekly_reconciliation(CHAIN_ID)

        async with seeded_database.transaction() as session:
            await session.execute(
                update(BurnEvent).where(BurnEvent.transaction_hash == "0xa").values(xen_amount_direct=81)
            )
        await validator.run_weekly_reconciliation(CHAIN_ID)

        run = (await validations(seeded_database, "weekly_reconciliation"))[-1]
        assert run.status == "integrity_mismatch"
        assert run.details["type"] == "IntegrityError"

    @pytest.mark.asyncio
    async def test_schedule_runs_checks(self, seeded_database):
        await insert(seeded_database, "0xa", 100)
        settings = ValidationSettings(daily_interval_seconds=0.01, weekly_interval_seconds=0.01)
        validator = DataValidator(seeded_database, settings)

        validator.start_schedule(lambda: [CHAIN_ID])
        for _ in range(200):
            if (
                await validations(seeded_database, "weekly_reconciliation")
                and await validations(seeded_database, "block_gaps")
            ):
                break
            await asyncio.sleep(0.01)
        await validator.stop_schedule()

        assert await validations(seeded_database, "block_gaps")
        assert await validations(seeded_database, "weekly_reconciliation")
