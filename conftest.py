import io
import zipfile

import pytest

from timetable_studio.common.config import Settings


def make_gtfs_zip(files):
    """In-memory zip with the given member name -> text contents."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def gtfs_zip():
    return make_gtfs_zip


@pytest.fixture
def settings():
    return Settings()
