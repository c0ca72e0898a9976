"""
Tests for the seed file validation script.
"""

from scripts.validate_rules import main, validate_seed_file


VALID = """
rules:
  - scope: global
    accepted_markers: [beta]
individuals:
  - id: ind-1
    accounts: [alice]
"""

INVALID = """
rules:
  - resource: listings
individuals:
  - id: ind-1
    accounts: [alice]
  - id: ind-2
    accounts: [alice]
  - markers: [beta]
"""


class TestValidateRules:
    """Test cases for scripts/validate_rules.py."""

    def test_valid_file(self, tmp_path, capsys):
        """A clean file passes with exit code 0."""
        path = tmp_path / "rules.yaml"
        path.write_text(VALID)

        assert validate_seed_file(path) == []
        assert main([str(path)]) == 0
        assert "seed file is valid" in capsys.readouterr().out

    def test_invalid_file(self, tmp_path):
        """Rule, account and id problems are all reported."""
        path = tmp_path / "rules.yaml"
        path.write_text(INVALID)

        errors = validate_seed_file(path)

        assert len(errors) == 3
        assert errors[0].startswith("rule #1")
        assert "already belongs to ind-1" in errors[1]
        assert errors[2] == "individual #3: id is required"
        assert main([str(path)]) == 1

    def test_missing_file(self, tmp_path):
        """Unreadable files are reported rather than raised."""
        assert len(validate_seed_file(tmp_path / "missing.yaml")) == 1

    def test_reports_what_the_loader_rejects(self, tmp_path):
        """Individual marker problems are reported, matching load_seed."""
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - scope: global\n"
            "    accepted_markers: []\n"
            "individuals:\n"
            "  - id: ind-1\n"
            "    markers: ['  ']\n"
        )

        assert validate_seed_file(path) == ["individual #1: Markers must be non-empty strings"]

    def test_scalar_markers(self, tmp_path):
        """A marker written as a plain string is reported."""
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - scope: global\n    accepted_markers: beta\n")

        assert validate_seed_file(path) == ["rule #1: Markers must be a list"]
