from datetime import datetime

import pytest

from app.services.backups.formatting import format_backup_date, format_bytes


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, "0 B"),
        (0.5, "0.5 B"),
        (-5, "0 B"),
        (512, "512 B"),
        (1023, "1023 B"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (1048576, "1 MB"),
        (1073741824, "1 GB"),
        (1099511627776, "1 TB"),
        (5 * 1024**5, "5120 TB"),
    ],
)
def test_format_bytes(size: int, expected: str) -> None:
    assert format_bytes(size) == expected


def test_format_bytes_precision() -> None:
    assert format_bytes(1234567, precision=1) == "1.2 MB"
    assert format_bytes(1234567) == "1.18 MB"


def test_format_backup_date() -> None:
    moment = datetime(2024, 3, 5, 9, 7, 0)
    assert format_backup_date(moment) == "Mar 5, 2024 09:07"
    assert format_backup_date(moment, with_time=False) == "Mar 5, 2024"
