"""StagePath value helpers and the element code / version generators."""
import pytest

from errors import BadInput, InvariantViolation
from utils.code_generator import element_code, next_version_code, random_id
from utils.stage_path import StagePath


class TestStagePathParsing:

    def test_brace_text(self):
        assert StagePath.parse("{76,75,74,73,77}") == (76, 75, 74, 73, 77)

    def test_plain_comma_text_with_spaces(self):
        assert StagePath.parse(" 76, 75 ,74 ") == (76, 75, 74)

    def test_sequence(self):
        assert StagePath.parse([76, "75"]) == (76, 75)

    def test_empty_forms(self):
        assert StagePath.parse(None) == ()
        assert StagePath.parse("{}") == ()
        assert StagePath.parse("") == ()

    def test_garbage_is_bad_input(self):
        with pytest.raises(BadInput):
            StagePath.parse("{76,abc}")

    def test_serialise(self):
        assert StagePath([76, 75]).serialise() == "{76,75}"


class TestStagePathNavigation:

    path = StagePath([76, 75, 74, 73, 77])

    def test_first_and_last(self):
        assert self.path.first() == 76
        assert self.path.last() == 77

    def test_next_after(self):
        assert self.path.next_after(76) == 75
        assert self.path.next_after(73) == 77

    def test_next_after_final_stage_is_none(self):
        assert self.path.next_after(77) is None

    def test_next_after_unknown_stage(self):
        with pytest.raises(InvariantViolation):
            self.path.next_after(99)

    def test_contains(self):
        assert self.path.contains(74)
        assert not self.path.contains(99)

    def test_empty_path_is_an_invariant_violation(self):
        with pytest.raises(InvariantViolation):
            StagePath().first()


class TestCodeGenerator:

    def test_first_version(self):
        assert next_version_code("") == "RV-01"
        assert next_version_code(None) == "RV-01"

    def test_version_increments(self):
        assert next_version_code("RV-01") == "RV-02"
        assert next_version_code("RV-09") == "RV-10"
        assert next_version_code("RV-99") == "RV-100"

    def test_malformed_version(self):
        with pytest.raises(InvariantViolation):
            next_version_code("v2")

    def test_random_id_is_nine_digits(self):
        for _ in range(50):
            assert 100_000_000 <= random_id() <= 999_999_999

    def test_element_code(self):
        assert element_code("wall", "TA-F1", 7) == "WALL/TA-F1/0007"
