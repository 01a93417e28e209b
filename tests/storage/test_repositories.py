"""
Tests for the Repository Layer.

============================================================
PURPOSE
============================================================
Runs every repository against an in-memory SQLite store:
1. Fact inserts, validation and grouped counts
2. Duplicate group discovery
3. Derived rows and the unique derived key
4. Summary upserts and child sums
5. Transaction boundaries

============================================================
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from core.reference_data import ReferenceData
from reconciliation.difficulty import StoredDifficultySource
from storage.repositories import (
    DerivedRepository,
    DifficultyRepository,
    DerivedRow,
    DuplicateRecordError,
    FactIngestRow,
    FactKey,
    FactRepository,
    SummaryLevel,
    SummaryRepository,
    ValidationError,
)


DAY = date(2025, 3, 21)
NOW = datetime(2025, 3, 22, 12, 0, tzinfo=timezone.utc)


# ============================================================
# FACT REPOSITORY TESTS
# ============================================================

class TestFactRepository:
    """Tests for FactRepository."""

    def test_insert_and_count(self, database, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("-10")), (1, "T_A", Decimal("-10")), (2, "T_B", Decimal("-5"))])

        with database.session() as session:
            facts = FactRepository(session)
            assert facts.count_for_date(DAY) == 3
            assert facts.unique_combo_count(DAY) == 2
            assert facts.fact_keys(DAY) == {FactKey(1, "T_A"), FactKey(2, "T_B")}
            assert facts.total_fact_count() == 3

    def test_period_out_of_range_rejected(self, database):
        row = FactIngestRow(settlement_date=DAY, settlement_period=49, entity_id="T_A", quantity=Decimal("1"))
        with pytest.raises(ValidationError):
            with database.transaction_scope() as session:
                FactRepository(session).insert_facts([row])

    def test_empty_entity_rejected(self, database):
        row = FactIngestRow(settlement_date=DAY, settlement_period=1, entity_id="", quantity=Decimal("1"))
        with pytest.raises(ValidationError):
            with database.transaction_scope() as session:
                FactRepository(session).insert_facts([row])

    def test_unique_combos_by_date_range(self, database, seed_facts):
        seed_facts(date(2025, 3, 20), [(1, "T_A", Decimal("1"))])
        seed_facts(DAY, [(1, "T_A", Decimal("1")), (1, "T_A", Decimal("1")), (2, "T_A", Decimal("1"))])
        seed_facts(date(2025, 3, 22), [(1, "T_B", Decimal("1"))])

        with database.session() as session:
            counts = FactRepository(session).unique_combos_by_date(DAY, date(2025, 3, 22))

        assert [(c.settlement_date, c.unique_combos) for c in counts] == [
            (DAY, 2),
            (date(2025, 3, 22), 1),
        ]

    def test_totals_use_magnitudes(self, database, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("-10.5")), (2, "T_B", Decimal("4.5"))])

        with database.session() as session:
            totals = FactRepository(session).totals_for_date(DAY)

        assert totals.record_count == 2
        assert totals.total_quantity == Decimal("15")
        assert totals.total_payment == Decimal("750")

    def test_totals_for_empty_date_are_zero(self, database):
        with database.session() as session:
            totals = FactRepository(session).totals_for_date(DAY)
        assert totals.record_count == 0
        assert totals.total_quantity == Decimal(0)

    def test_duplicate_groups(self, database, seed_facts):
        seed_facts(DAY, [
            (2, "T_B", Decimal("-5")),
            (1, "T_A", Decimal("-10")),
            (1, "T_A", Decimal("-10")),
            (2, "T_B", Decimal("-5")),
            (1, "T_A", Decimal("-10")),
            (3, "T_C", Decimal("-1")),
        ])

        with database.session() as session:
            facts = FactRepository(session)
            assert facts.has_duplicates(DAY)
            groups = facts.duplicate_groups(DAY)

        assert [group.key for group in groups] == [FactKey(1, "T_A"), FactKey(2, "T_B")]
        first = groups[0]
        assert len(first.member_ids) == 3
        assert list(first.member_ids) == sorted(first.member_ids)
        assert first.keep_id == min(first.member_ids)
        assert len(first.remove_ids) == 2
        assert first.total_quantity == Decimal("30")

    def test_no_duplicates(self, database, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("1")), (1, "T_B", Decimal("1"))])
        with database.session() as session:
            facts = FactRepository(session)
            assert not facts.has_duplicates(DAY)
            assert facts.duplicate_groups(DAY) == []

    def test_delete_by_ids_and_period(self, database, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("1")), (1, "T_B", Decimal("1")), (2, "T_A", Decimal("1"))])

        with database.transaction_scope() as session:
            facts = FactRepository(session)
            first_id = facts.facts_for_date(DAY)[0].id
            assert facts.delete_by_ids([first_id]) == 1
            assert facts.delete_period(DAY, 2) == 1

        with database.session() as session:
            remaining = FactRepository(session).facts_for_date(DAY)
        assert [fact.key for fact in remaining] == [FactKey(1, "T_B")]

    def test_facts_in_ingestion_order(self, database, seed_facts):
        seed_facts(DAY, [(5, "T_Z", Decimal("1")), (1, "T_A", Decimal("2"))])
        with database.session() as session:
            facts = FactRepository(session).facts_for_date(DAY)
        assert [fact.entity_id for fact in facts] == ["T_Z", "T_A"]
        assert facts[0].id < facts[1].id


# ============================================================
# DERIVED REPOSITORY TESTS
# ============================================================

def _row(period: int, entity: str, variant: str = "S9", value: str = "0.5") -> DerivedRow:
    return DerivedRow(
        settlement_date=DAY,
        settlement_period=period,
        entity_id=entity,
        model_variant=variant,
        value=Decimal(value),
        parameter_snapshot={"variant": variant},
        computed_at=NOW,
    )


class TestDerivedRepository:
    """Tests for DerivedRepository."""

    def test_insert_and_read(self, database):
        with database.transaction_scope() as session:
            assert DerivedRepository(session).insert_rows([_row(1, "T_A"), _row(2, "T_A")]) == 2

        with database.session() as session:
            derived = DerivedRepository(session)
            assert derived.count_for(DAY, "S9") == 2
            assert derived.keys_for(DAY, "S9") == {FactKey(1, "T_A"), FactKey(2, "T_A")}
            assert derived.values_for(DAY, "S9")[FactKey(1, "T_A")] == Decimal("0.5")
            assert derived.latest_computed_at(DAY) is not None

    def test_duplicate_derived_key_rejected(self, database):
        with database.transaction_scope() as session:
            DerivedRepository(session).insert_rows([_row(1, "T_A")])

        with pytest.raises(DuplicateRecordError):
            with database.transaction_scope() as session:
                DerivedRepository(session).insert_rows([_row(1, "T_A")])

    def test_same_key_different_variant_allowed(self, database):
        with database.transaction_scope() as session:
            DerivedRepository(session).insert_rows([_row(1, "T_A", "S9"), _row(1, "T_A", "M20S")])

        with database.session() as session:
            counts = DerivedRepository(session).counts_by_variant(["S19J_PRO", "S9", "M20S"])
        assert counts == {"S19J_PRO": 0, "S9": 1, "M20S": 1}

    def test_counts_require_matching_fact(self, database, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("-1"))])
        with database.transaction_scope() as session:
            DerivedRepository(session).insert_rows([_row(1, "T_A"), _row(9, "GONE")])

        with database.session() as session:
            derived = DerivedRepository(session)
            assert derived.counts_by_variant(["S9"]) == {"S9": 2}
            assert derived.counts_by_variant(["S9"], require_fact=True) == {"S9": 1}
            [count] = derived.counts_by_date(["S9"], DAY, DAY, require_fact=True)
        assert count.count == 1

    def test_unregistered_variants_not_counted(self, database):
        with database.transaction_scope() as session:
            DerivedRepository(session).insert_rows([_row(1, "T_A", "LEGACY")])

        with database.session() as session:
            assert DerivedRepository(session).counts_by_date(["S9"]) == []

    def test_delete_for(self, database):
        with database.transaction_scope() as session:
            derived = DerivedRepository(session)
            derived.insert_rows([_row(1, "T_A", "S9"), _row(1, "T_A", "M20S")])
            assert derived.delete_for(DAY, "S9") == 1
            assert derived.count_for(DAY, "M20S") == 1

    def test_daily_summary_upsert(self, database):
        with database.transaction_scope() as session:
            derived = DerivedRepository(session)
            derived.upsert_daily_summary(DAY, "S9", Decimal("1.5"), 3)
            derived.upsert_daily_summary(DAY, "S9", Decimal("2.25"), 4)

        with database.session() as session:
            summary = DerivedRepository(session).daily_summary(DAY, "S9")
        assert summary.total_value == Decimal("2.25")
        assert summary.record_count == 4


# ============================================================
# SUMMARY REPOSITORY TESTS
# ============================================================

class TestSummaryRepository:
    """Tests for SummaryRepository."""

    def test_upsert_replaces(self, database):
        with database.transaction_scope() as session:
            summaries = SummaryRepository(session)
            summaries.upsert(SummaryLevel.DAILY, "2025-03-21", Decimal("10"), Decimal("500"), NOW)
            summaries.upsert(SummaryLevel.DAILY, "2025-03-21", Decimal("4"), Decimal("200"), NOW)

        with database.session() as session:
            daily = SummaryRepository(session).get(SummaryLevel.DAILY, "2025-03-21")
        assert daily.total_quantity == Decimal("4")
        assert daily.total_payment == Decimal("200")

    @pytest.mark.parametrize("level, period_key", [
        (SummaryLevel.DAILY, "2025-03-21"),
        (SummaryLevel.MONTHLY, "2025-03"),
        (SummaryLevel.YEARLY, "2025"),
    ])
    def test_each_level_round_trips(self, database, level, period_key):
        with database.transaction_scope() as session:
            SummaryRepository(session).upsert(level, period_key, Decimal("3"), Decimal("150"), NOW)

        with database.transaction_scope() as session:
            summaries = SummaryRepository(session)
            assert summaries.get(level, period_key).total_payment == Decimal("150")
            assert summaries.delete(level, period_key) == 1
            assert summaries.get(level, period_key) is None

    def test_sum_children(self, database):
        with database.transaction_scope() as session:
            summaries = SummaryRepository(session)
            summaries.upsert(SummaryLevel.DAILY, "2025-03-21", Decimal("10"), Decimal("500"), NOW)
            summaries.upsert(SummaryLevel.DAILY, "2025-03-22", Decimal("5"), Decimal("250"), NOW)
            summaries.upsert(SummaryLevel.DAILY, "2025-04-01", Decimal("1"), Decimal("50"), NOW)
            summaries.upsert(SummaryLevel.MONTHLY, "2025-03", Decimal("15"), Decimal("750"), NOW)
            summaries.upsert(SummaryLevel.MONTHLY, "2025-04", Decimal("1"), Decimal("50"), NOW)
            summaries.upsert(SummaryLevel.MONTHLY, "2024-12", Decimal("99"), Decimal("99"), NOW)

        with database.session() as session:
            summaries = SummaryRepository(session)
            assert summaries.sum_children(SummaryLevel.MONTHLY, "2025-03") == (2, Decimal("15"), Decimal("750"))
            assert summaries.sum_children(SummaryLevel.YEARLY, "2025") == (2, Decimal("16"), Decimal("800"))

    def test_daily_has_no_children(self, database):
        with database.session() as session:
            with pytest.raises(ValueError):
                SummaryRepository(session).sum_children(SummaryLevel.DAILY, "2025-03-21")

    def test_missing_summary(self, database):
        with database.session() as session:
            assert SummaryRepository(session).get(SummaryLevel.YEARLY, "1999") is None


# ============================================================
# DIFFICULTY REPOSITORY TESTS
# ============================================================

class TestDifficultyRepository:
    """Tests for stored network difficulty."""

    def test_upsert_and_get(self, database):
        with database.transaction_scope() as session:
            repo = DifficultyRepository(session)
            repo.upsert(DAY, Decimal("100000000000000"))
            repo.upsert(DAY, Decimal("110000000000000"))

        with database.session() as session:
            repo = DifficultyRepository(session)
            assert repo.get(DAY) == Decimal("110000000000000")
            assert repo.get(date(2025, 3, 20)) is None

    @pytest.mark.parametrize("difficulty", ["0", "-1", "NaN"])
    def test_rejects_non_positive(self, database, difficulty):
        with database.transaction_scope() as session:
            with pytest.raises(ValidationError):
                DifficultyRepository(session).upsert(DAY, Decimal(difficulty))

    def test_reference_reads_stored_history(self, database):
        with database.transaction_scope() as session:
            DifficultyRepository(session).upsert(DAY, Decimal("95000000000000"))

        reference = ReferenceData.build(difficulty_source=StoredDifficultySource(database))

        assert reference.difficulty_for(DAY) == Decimal("95000000000000")
        assert reference.difficulty_for(date(2025, 3, 20)) == reference.network.difficulty


# ============================================================
# TRANSACTION TESTS
# ============================================================

class TestTransactions:
    """Tests for Database transaction boundaries."""

    def test_rollback_on_error(self, database):
        row = FactIngestRow(settlement_date=DAY, settlement_period=1, entity_id="T_A", quantity=Decimal("1"))
        with pytest.raises(RuntimeError):
            with database.transaction_scope() as session:
                FactRepository(session).insert_facts([row])
                raise RuntimeError("abort")

        with database.session() as session:
            assert FactRepository(session).count_for_date(DAY) == 0

    def test_verify_connection(self, database):
        assert database.verify_connection()
