"""
Tests for timestamp parsing, timezone conversion and calendar fields.
"""

import numpy as np
import pandas as pd
import pytest
import pytz

from crime_weather.time_utils import (
    WEEKDAY_ORDER,
    add_calendar_fields,
    as_date_key,
    build_date_range,
    filter_date_range,
    get_date_coverage,
    get_timezone,
    local_calendar_date,
    parse_timestamps,
    to_local_timezone,
)


class TestParseTimestamps:

    def test_utc_label_tolerated(self):
        parsed = parse_timestamps(pd.Series(["2014-07-01 04:00:00 +0000 UTC"]))
        assert parsed.iloc[0] == pd.Timestamp("2014-07-01 04:00:00", tz="UTC")

    def test_naive_localized_to_source(self):
        parsed = parse_timestamps(pd.Series(["2014-07-01 04:00:00"]), source_tz="UTC")
        assert str(parsed.dt.tz) == "UTC"

    def test_mixed_formats_each_parsed(self):
        parsed = parse_timestamps(
            pd.Series(["2014-07-01 04:00:00 +0000", "2014-07-01 05:00:00"]),
            source_tz="America/New_York",
        )
        assert parsed.iloc[0] == pd.Timestamp("2014-07-01 04:00:00", tz="UTC")
        assert parsed.iloc[1] == pd.Timestamp("2014-07-01 09:00:00", tz="UTC")

    @pytest.mark.parametrize("bad", [np.nan, None, "", "   ", "N/A"])
    def test_missing_or_junk_among_offsets_is_nat(self, bad):
        parsed = parse_timestamps(pd.Series([
            "2014-01-01 12:00:00 +0000 UTC",
            bad,
            "2014-01-01 13:00:00 +0000 UTC",
        ]))
        assert parsed.isna().tolist() == [False, True, False]
        assert parsed.iloc[2] == pd.Timestamp("2014-01-01 13:00:00", tz="UTC")


class TestLocalConversion:

    def test_summer_offset(self):
        utc = pd.Series(pd.to_datetime(["2014-07-01 03:00:00"]).tz_localize("UTC"))
        local = to_local_timezone(utc, "America/New_York")
        # EDT is UTC-4
        assert local.iloc[0].hour == 23
        assert local_calendar_date(local).iloc[0] == pd.Timestamp("2014-06-30")

    def test_winter_offset(self):
        utc = pd.Series(pd.to_datetime(["2014-01-01 04:59:00"]).tz_localize("UTC"))
        local = to_local_timezone(utc, "America/New_York")
        # EST is UTC-5
        assert local_calendar_date(local).iloc[0] == pd.Timestamp("2013-12-31")

    def test_unknown_timezone(self):
        with pytest.raises(pytz.UnknownTimeZoneError):
            get_timezone("Mars/Olympus")


class TestCalendarFields:

    def test_fields(self):
        df = add_calendar_fields(pd.DataFrame({"date": pd.to_datetime(["2016-02-29", "2017-01-01"])}))
        assert df["year"].tolist() == [2016, 2017]
        assert df["month"].tolist() == [2, 1]
        assert df["day"].tolist() == [29, 1]
        assert df["weekday"].tolist() == ["Monday", "Sunday"]
        # 2017-01-01 belongs to ISO week 52 of 2016
        assert df["week"].tolist() == [9, 52]

    def test_weekday_order(self):
        df = add_calendar_fields(pd.DataFrame({"date": pd.to_datetime(["2014-01-01"])}))
        assert list(df["weekday"].cat.categories) == WEEKDAY_ORDER
        assert df["weekday"].cat.ordered


class TestDateRanges:

    def test_inclusive(self):
        dates = build_date_range("2014-01-30", "2014-02-02")
        assert len(dates) == 4
        assert dates[0] == pd.Timestamp("2014-01-30")
        assert dates[-1] == pd.Timestamp("2014-02-02")

    def test_reversed_raises(self):
        with pytest.raises(ValueError):
            build_date_range("2014-02-02", "2014-01-30")

    def test_filter_and_coverage(self):
        df = pd.DataFrame({"date": pd.to_datetime(["2013-12-31", "2014-01-01", "2014-01-05"])})
        kept = filter_date_range(df, "date", "2014-01-01", "2014-01-04")
        assert len(kept) == 1
        assert get_date_coverage(df, "date") == (pd.Timestamp("2013-12-31"), pd.Timestamp("2014-01-05"))
        assert get_date_coverage(df.iloc[:0], "date") == (None, None)

    def test_as_date_key_normalizes(self):
        keys = as_date_key(pd.Series(["2014-01-01 13:45"]))
        assert keys.iloc[0] == pd.Timestamp("2014-01-01")
        assert keys.dtype == "datetime64[ns]"
