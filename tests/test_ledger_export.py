"""
Tests for the Excel ledger export.
"""

from dataclasses import replace

import pytest

from conftest import START
from homechef.domain import RecipientType, TipStatus, TipTransaction
from homechef.services.ledger_export import LedgerExporter


def make_tip(tip_id, status=TipStatus.COMPLETED, amount=50.0):
    return TipTransaction(
        id=tip_id,
        from_user_id="cust_1",
        recipient_id="chef_1",
        recipient_type=RecipientType.CHEF,
        amount=amount,
        message="",
        order_id=f"ORD-{tip_id}",
        created_at=START,
        status=status,
        external_reference=f"txn_{tip_id}" if status == TipStatus.COMPLETED else None,
        settled_at=START if status != TipStatus.PENDING else None,
    )


@pytest.fixture
def exporter(tmp_path):
    return LedgerExporter(data_directory=str(tmp_path / "exports"), filename="tips.xlsx", lock_timeout=1)


def test_exports_completed_tips_only(exporter):
    result = exporter.export_tips([
        make_tip("TIP-1"),
        make_tip("TIP-2", status=TipStatus.PENDING),
        replace(make_tip("TIP-3", status=TipStatus.FAILED), failure_reason="declined"),
    ])

    assert result["success"] is True
    assert result["exported"] == 1
    rows = exporter.read_all()
    assert [row["tip_id"] for row in rows] == ["TIP-1"]
    assert rows[0]["external_reference"] == "txn_TIP-1"
    assert list(rows[0].keys()) == LedgerExporter.TIP_COLUMNS


def test_repeated_export_skips_known_tips(exporter):
    exporter.export_tips([make_tip("TIP-1")])
    result = exporter.export_tips([make_tip("TIP-1"), make_tip("TIP-2", amount=20.0)])

    assert result["exported"] == 1
    rows = exporter.read_all()
    assert [row["tip_id"] for row in rows] == ["TIP-1", "TIP-2"]
    assert rows[1]["amount"] == pytest.approx(20.0)


def test_export_nothing(exporter):
    result = exporter.export_tips([])

    assert result["success"] is True
    assert result["exported"] == 0
    assert exporter.read_all() == []


def test_clear(exporter):
    exporter.export_tips([make_tip("TIP-1")])

    assert exporter.clear() is True
    assert not exporter.file_path.exists()
    assert exporter.read_all() == []


def test_unreadable_workbook_is_left_untouched(exporter):
    exporter.data_dir.mkdir(parents=True)
    exporter.file_path.write_bytes(b"not a workbook")

    result = exporter.export_tips([make_tip("TIP-1")])

    assert result["success"] is False
    assert result["exported"] == 0
    assert "unreadable" in result["message"]
    assert exporter.file_path.read_bytes() == b"not a workbook"
