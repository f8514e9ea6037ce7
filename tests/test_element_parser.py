"""
Element parser tests: fixed-column extraction, year pivot, batch skipping.
"""

import pytest

from orbit_tracker import (
    ElementParseError,
    Satellite,
    SGP4Model,
    parse_batch,
    parse_elements,
    parse_record,
    resolve_year,
)
from tests.conftest import (
    GEO_LINE1,
    GEO_LINE2,
    GEO_NAME,
    GPS_LINE1,
    GPS_LINE2,
    GPS_NAME,
    ISS_LINE1,
    ISS_LINE2,
    ISS_NAME,
    FakeModel,
    record,
    with_epoch,
)


class TestParseElements:
    """Fixed-column field extraction"""

    def test_iss_fields(self):
        """ISS record yields the expected identifiers and elements"""
        e = parse_elements(ISS_NAME, ISS_LINE1, ISS_LINE2)
        assert e.name == "ISS (ZARYA)"
        assert e.catalog_id == 25544
        assert e.intl_designator == "98067A"
        assert e.launch_year == 1998
        assert e.launch_number == 67
        assert e.launch == "1998-067"
        assert e.epoch_year == 2024
        assert e.epoch_day == pytest.approx(1.5)
        assert e.inclination == pytest.approx(51.6416)
        assert e.mean_motion == pytest.approx(15.5038)

    def test_iss_period(self):
        """Period derived from mean motion is ~92.9 minutes"""
        e = parse_elements(ISS_NAME, ISS_LINE1, ISS_LINE2)
        assert e.period_minutes == pytest.approx(1440.0 / 15.5038)
        assert abs(e.period_minutes - 92.88) < 0.05

    def test_name_is_trimmed(self):
        """Padding around the name line is removed"""
        e = parse_elements("  ISS (ZARYA)   ", ISS_LINE1, ISS_LINE2)
        assert e.name == "ISS (ZARYA)"

    def test_raw_lines_kept(self):
        """Raw data lines are retained for the propagation handle"""
        e = parse_elements(ISS_NAME, ISS_LINE1, ISS_LINE2)
        assert e.line1 == ISS_LINE1
        assert e.line2 == ISS_LINE2

    def test_short_line_rejected(self):
        """A data line under 69 columns is rejected"""
        with pytest.raises(ElementParseError):
            parse_elements(ISS_NAME, ISS_LINE1[:68], ISS_LINE2)
        with pytest.raises(ElementParseError):
            parse_elements(ISS_NAME, ISS_LINE1, ISS_LINE2[:60])

    def test_bad_catalog_column_rejected(self):
        """Non-numeric catalog number is rejected"""
        line1 = ISS_LINE1[:2] + "AB5X4" + ISS_LINE1[7:]
        with pytest.raises(ElementParseError, match="catalog number"):
            parse_elements(ISS_NAME, line1, ISS_LINE2)

    def test_bad_mean_motion_rejected(self):
        """Non-numeric mean motion is rejected"""
        line2 = ISS_LINE2[:52] + "15.5O38OOOO" + ISS_LINE2[63:]
        with pytest.raises(ElementParseError, match="mean motion"):
            parse_elements(ISS_NAME, ISS_LINE1, line2)

    def test_epoch_day_below_range_rejected(self):
        """Epoch day must be at least 1"""
        line1 = with_epoch(ISS_LINE1, "24000.50000000")
        with pytest.raises(ElementParseError, match="epoch day"):
            parse_elements(ISS_NAME, line1, ISS_LINE2)

    def test_epoch_day_upper_bound(self):
        """Day 366.x is accepted by the parser; 367 is not"""
        assert parse_elements(ISS_NAME, with_epoch(ISS_LINE1, "24366.50000000"),
                              ISS_LINE2).epoch_day == pytest.approx(366.5)
        with pytest.raises(ElementParseError):
            parse_elements(ISS_NAME, with_epoch(ISS_LINE1, "24367.00000000"), ISS_LINE2)


class TestYearPivot:
    """Two-digit year resolution"""

    @pytest.mark.parametrize("yy,year", [(57, 1957), (56, 2056), (0, 2000), (99, 1999), (24, 2024)])
    def test_resolve_year(self, yy, year):
        """Years below 57 land in the 2000s, the rest in the 1900s"""
        assert resolve_year(yy) == year

    def test_epoch_year_57(self):
        """Epoch year field '57' parses to 1957"""
        e = parse_elements(ISS_NAME, with_epoch(ISS_LINE1, "57001.50000000"), ISS_LINE2)
        assert e.epoch_year == 1957

    def test_epoch_year_56(self):
        """Epoch year field '56' parses to 2056"""
        e = parse_elements(ISS_NAME, with_epoch(ISS_LINE1, "56001.50000000"), ISS_LINE2)
        assert e.epoch_year == 2056


class TestParseRecord:
    """Record -> Satellite with a propagation handle"""

    def test_builds_satellite_with_sgp4(self):
        """Real SGP4 builds a handle for the ISS record"""
        sat = parse_record(ISS_NAME, ISS_LINE1, ISS_LINE2)
        assert isinstance(sat, Satellite)
        assert isinstance(sat.model, SGP4Model)
        assert sat.handle is not None
        assert sat.path is None
        assert sat.catalog_id == 25544

    def test_uses_supplied_model(self, fake_model):
        """The handle comes from the supplied model"""
        sat = parse_record(ISS_NAME, ISS_LINE1, ISS_LINE2, fake_model)
        assert sat.model is fake_model
        assert sat.handle["line1"] == ISS_LINE1


class TestParseBatch:
    """Batch parsing skips bad records and never fails"""

    def test_empty_text(self):
        """Empty input yields no satellites and no error"""
        assert parse_batch("") == []

    def test_three_valid_records(self, batch_text):
        """All three sample records parse with real SGP4"""
        sats = parse_batch(batch_text)
        assert [s.catalog_id for s in sats] == [25544, 28474, 28899]

    def test_malformed_middle_record_skipped(self):
        """Second record malformed -> exactly two satellites"""
        text = (record(ISS_NAME, ISS_LINE1, ISS_LINE2)
                + record(GPS_NAME, GPS_LINE1[:40], GPS_LINE2)
                + record(GEO_NAME, GEO_LINE1, GEO_LINE2))
        sats = parse_batch(text)
        assert [s.name for s in sats] == [ISS_NAME, GEO_NAME]

    def test_construction_failure_skipped(self, batch_text):
        """A record the model refuses to build is skipped"""
        sats = parse_batch(batch_text, FakeModel(reject={"28474"}))
        assert [s.catalog_id for s in sats] == [25544, 28899]

    def test_trailing_partial_group_dropped(self, iss_text):
        """An incomplete final group is ignored"""
        sats = parse_batch(iss_text + GPS_NAME + "\n" + GPS_LINE1 + "\n")
        assert len(sats) == 1

    def test_blank_lines_ignored(self):
        """Blank separator lines do not shift the grouping"""
        text = "\n" + record(ISS_NAME, ISS_LINE1, ISS_LINE2) + "\n\n" + record(GPS_NAME, GPS_LINE1, GPS_LINE2)
        sats = parse_batch(text, FakeModel())
        assert [s.catalog_id for s in sats] == [25544, 28474]

    def test_crlf_line_endings(self):
        """Windows line endings are accepted"""
        text = record(ISS_NAME, ISS_LINE1, ISS_LINE2).replace("\n", "\r\n")
        assert len(parse_batch(text, FakeModel())) == 1
