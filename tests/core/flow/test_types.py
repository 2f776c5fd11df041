from conntest.flow import (
    EOF,
    Data,
    EndOfStream,
    Lost,
)


def test_eof_is_a_falsy_singleton():
    assert EndOfStream() is EOF
    assert not EOF
    assert repr(EOF) == "EOF"


def test_results_compare_by_value():
    assert Data(b"x", 3) == Data(b"x", 3)
    assert Data(b"x") != Data(b"x", 0)
    assert Lost(4) == Lost(4)
