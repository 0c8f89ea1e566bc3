import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for `import newlife_bot`
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from newlife_bot.models import init_db  # noqa: E402


@pytest.fixture
def db(tmp_path):
    database = init_db(str(tmp_path / "newlife.db"))
    yield database
    database.close()
