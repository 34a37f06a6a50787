import pytest

from ltfixture.errors import FileTooLargeError
from ltfixture.utils import file_size, load_file, sha1_file, wait_for


def test_load_file(tmp_path):
    path = tmp_path / "blob"
    path.write_bytes(b"x" * 100)
    assert load_file(str(path)) == b"x" * 100
    with pytest.raises(FileTooLargeError):
        load_file(str(path), limit=99)


def test_wait_for_survives_exceptions():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("not up yet")
        return True

    assert wait_for(flaky, timeout=2, interval=0.01)
    assert len(calls) == 3


def test_wait_for_timeout():
    assert not wait_for(lambda: False, timeout=0.1, interval=0.02)


def test_file_helpers(tmp_path):
    path = tmp_path / "data"
    path.write_bytes(b"abc")
    assert file_size(str(path)) == 3
    assert file_size(str(tmp_path / "missing")) == 0
    assert sha1_file(str(path)) == "a9993e364706816aba3e25717850c26c9cd0d89d"
