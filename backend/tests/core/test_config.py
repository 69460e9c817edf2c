# backend/tests/core/test_config.py
import pytest
from pydantic import ValidationError

from app.core.config import Settings


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db/forum", "postgresql+asyncpg://u:p@db/forum"),
        ("postgres://u:p@db/forum", "postgresql+asyncpg://u:p@db/forum"),
        ("postgresql+asyncpg://u:p@db/forum", "postgresql+asyncpg://u:p@db/forum"),
        ("sqlite+aiosqlite://", "sqlite+aiosqlite://"),
    ],
)
def test_database_url_accepted(url, expected):
    assert Settings(database_url=url).database_url == expected


@pytest.mark.parametrize(
    "url",
    ["mysql+aiomysql://u:p@db/forum", "sqlite:///forum.db", "oracle://u:p@db"],
)
def test_unsupported_database_backend_rejected(url):
    with pytest.raises(ValidationError, match="database_url"):
        Settings(database_url=url)
