from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from seohub.utils.cron import calculate_next_run
from seohub.utils.cron import validate_cron_or_raise
from seohub.utils.crypto import decrypt
from seohub.utils.crypto import encrypt
from seohub.utils.time import months_ago
from seohub.utils.time import to_naive_utc


class TestCron:
    @pytest.mark.parametrize("expr", ["0 9 * * 1", "*/15 * * * *", "0 6 1 * *", "30 8 * * 1-5", "0 0 * * 0,6", None])
    def test_valid_expressions(self, expr):
        validate_cron_or_raise(expr)

    @pytest.mark.parametrize("expr", ["not a cron", "61 * * * *", "0 9 * *", "0 9 * * 9"])
    def test_invalid_expressions(self, expr):
        with pytest.raises(ValueError, match="Invalid cron expression"):
            validate_cron_or_raise(expr)

    def test_next_run_is_strictly_after_base(self):
        base = datetime(2024, 5, 6, 9, 0)
        # Monday 09:00 exactly: the next fire is a week later.
        assert calculate_next_run("0 9 * * 1", base) == datetime(2024, 5, 13, 9, 0)

    def test_sunday_as_zero_and_seven(self):
        base = datetime(2024, 5, 1, 12, 0)
        assert calculate_next_run("0 0 * * 0", base) == datetime(2024, 5, 5, 0, 0)
        assert calculate_next_run("0 0 * * 7", base) == datetime(2024, 5, 5, 0, 0)

    def test_weekday_range(self):
        # Friday evening rolls over to Monday.
        assert calculate_next_run("30 8 * * 1-5", datetime(2024, 5, 3, 20, 0)) == datetime(2024, 5, 6, 8, 30)

    def test_weekday_range_with_step(self):
        # 2024-01-01 is a Monday; 1-5/2 fires Mon, Wed and Fri.
        base = datetime(2024, 1, 1, 10, 0)
        assert calculate_next_run("0 9 * * 1-5/2", base) == datetime(2024, 1, 3, 9, 0)
        assert calculate_next_run("0 9 * * 1-5/2", datetime(2024, 1, 3, 10, 0)) == datetime(2024, 1, 5, 9, 0)
        assert calculate_next_run("0 9 * * 1-5/2", datetime(2024, 1, 5, 10, 0)) == datetime(2024, 1, 8, 9, 0)

    def test_weekday_wildcard_and_start_with_step(self):
        base = datetime(2024, 1, 1, 10, 0)
        # */2 counts from Sunday: Sun, Tue, Thu, Sat.
        assert calculate_next_run("0 9 * * */2", base) == datetime(2024, 1, 2, 9, 0)
        assert calculate_next_run("0 9 * * */2", datetime(2024, 1, 6, 10, 0)) == datetime(2024, 1, 7, 9, 0)
        # 1/3 runs from Monday to Saturday: Mon and Thu.
        assert calculate_next_run("0 9 * * 1/3", base) == datetime(2024, 1, 4, 9, 0)

    @pytest.mark.parametrize("expr", ["0 9 * * 5-1", "0 9 * * 1-5/0", "0 9 * * 1-9/2"])
    def test_invalid_weekday_steps(self, expr):
        with pytest.raises(ValueError, match="Invalid cron expression"):
            validate_cron_or_raise(expr)

    def test_aware_base_returns_naive_utc(self):
        base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert calculate_next_run("0 * * * *", base) == datetime(2024, 5, 1, 11, 0)

    def test_invalid_pattern_falls_back_to_a_day_later(self):
        base = datetime(2024, 5, 1, 12, 0)
        assert calculate_next_run("garbage", base) == base + timedelta(hours=24)


class TestTime:
    def test_months_ago_clamps_to_month_end(self):
        assert months_ago(date(2024, 3, 31), 1) == date(2024, 2, 29)
        assert months_ago(date(2024, 1, 15), 3) == date(2023, 10, 15)
        assert months_ago(date(2024, 5, 31), 12) == date(2023, 5, 31)

    def test_to_naive_utc(self):
        aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert to_naive_utc(aware) == datetime(2024, 5, 1, 17, 0)
        naive = datetime(2024, 5, 1, 12, 0)
        assert to_naive_utc(naive) is naive


class TestCrypto:
    def test_round_trip(self):
        token = encrypt("ya29.secret")
        assert token != "ya29.secret"
        assert decrypt(token) == "ya29.secret"

    def test_tampered_ciphertext(self):
        with pytest.raises(ValueError, match="decryption failed"):
            decrypt(encrypt("ya29.secret")[:-4] + "AAAA")
