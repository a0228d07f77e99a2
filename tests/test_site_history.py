"""Tests for the 2023 site history mapping."""

from pathlib import Path

import pytest

from overflow_watch.domain.history import SiteHistory
from overflow_watch.store.site_history import load_site_history

_HEADER = (
    "realtime_site_id,historical_site_id,confidence,distance_meters,spill_count_2023,"
    "avg_duration_per_spill_hrs,total_duration_hrs_2023,has_flow_rate,estimated_flow_m3_hour\n"
)


def _write(tmp_path: Path, *rows: str) -> Path:
    path = tmp_path / "site_mapping_with_flow_rates.csv"
    path.write_text(_HEADER + "".join(f"{r}\n" for r in rows), encoding="utf-8")
    return path


class TestSiteHistory:
    def test_volume_from_flow_rate(self) -> None:
        history = SiteHistory(realtime_site_id="CSO1", estimated_flow_m3_hour=250.0)
        assert history.estimated_volume_m3(90) == 375
        assert history.estimated_volume_litres(90) == 375_000

    def test_no_flow_rate_means_no_volume(self) -> None:
        history = SiteHistory(realtime_site_id="CSO1", spill_count_2023=12)
        assert history.estimated_volume_m3(600) is None
        assert history.estimated_volume_litres(None) is None

    def test_duration_vs_average(self) -> None:
        history = SiteHistory(realtime_site_id="CSO1", avg_duration_per_spill_hrs=4.0)
        assert history.duration_vs_average(720) == pytest.approx(3.0)
        assert SiteHistory(realtime_site_id="CSO1").duration_vs_average(720) is None


class TestLoadSiteHistory:
    def test_loads_rows_keyed_by_realtime_id(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "CSO0042,TW-123,high,35.2,41,6.5,266.5,yes,120",
            "CSO0043,TW-124,low,410,3,1.25,3.75,no,",
        )
        history = load_site_history(path)
        assert set(history) == {"CSO0042", "CSO0043"}
        first = history["CSO0042"]
        assert first.historical_site_id == "TW-123"
        assert first.spill_count_2023 == 41
        assert first.estimated_flow_m3_hour == 120.0
        assert history["CSO0043"].estimated_flow_m3_hour is None

    def test_flow_rate_ignored_unless_flagged(self, tmp_path: Path) -> None:
        history = load_site_history(_write(tmp_path, "CSO1,H1,medium,10,2,1,2,no,99"))
        assert history["CSO1"].estimated_flow_m3_hour is None

    def test_blank_and_garbled_numbers_default(self, tmp_path: Path) -> None:
        history = load_site_history(_write(tmp_path, "CSO1,,,,n/a,,, yes ,"))
        entry = history["CSO1"]
        assert entry.spill_count_2023 == 0
        assert entry.avg_duration_per_spill_hrs == 0.0
        assert entry.historical_site_id is None
        assert entry.estimated_flow_m3_hour is None

    def test_invalid_rows_are_skipped(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            ",H0,high,1,1,1,1,no,",
            "CSO1,H1,high,1,-5,1,1,no,",
            "CSO2,H2,high,1,5,1,1,yes,-10",
            "CSO3,H3,high,1,5,1,1,yes,10",
        )
        assert set(load_site_history(path)) == {"CSO3"}

    def test_quoted_fields(self, tmp_path: Path) -> None:
        path = _write(tmp_path, '"CSO1","Outfall, north bank",high,1,2,1,2,no,')
        assert load_site_history(path)["CSO1"].historical_site_id == "Outfall, north bank"

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert load_site_history(tmp_path / "absent.csv") == {}

    def test_blank_path_is_empty(self) -> None:
        assert load_site_history("") == {}
        assert load_site_history(None) == {}
