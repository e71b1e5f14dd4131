"""Tests for YAML content import."""

import pytest

from fe1prep.core.content_importer import import_content, import_content_file
from fe1prep.core.errors import ValidationError
from fe1prep.db import content_repository as content

CONTENT_YAML = """
subjects:
  - id: contract
    name: Contract Law
    slug: contract-law
    modules:
      - id: contract-formation
        name: Formation
        lessons:
          - id: offer
            title: Offer and acceptance
            video_duration: 900
          - id: consideration
            title: Consideration
            video_duration: 600
            published: false
      - id: contract-terms
        name: Terms
        order: 5
        lessons: []
essay_questions:
  - id: contract-2022-q1
    subject: Contract Law
    year: 2022
    exam_type: Spring
    text: Advise Mary on the enforceability of the agreement.
  - id: contract-sample
    subject: Contract Law
    text: Practice question.
"""


class TestImportContentFile:
    """Tests for import_content_file."""

    def test_imports_everything(self, db_path, tmp_path):
        """Subjects, modules, lessons and questions are stored."""
        path = tmp_path / "content.yaml"
        path.write_text(CONTENT_YAML)

        summary = import_content_file(path)

        assert summary.to_dict() == {
            "subjects": 1,
            "modules": 2,
            "lessons": 2,
            "essay_questions": 2,
        }
        assert content.get_subject("contract").name == "Contract Law"
        assert [m.module_id for m in content.list_published_modules("contract")] == [
            "contract-formation",
            "contract-terms",
        ]
        assert content.count_published_lessons("contract-formation") == 1
        assert content.get_lesson("offer").video_duration == 900
        assert content.list_simulation_eligible_question_ids() == ["contract-2022-q1"]

    def test_reimport_updates_in_place(self, db_path, tmp_path):
        """Importing twice does not duplicate rows."""
        path = tmp_path / "content.yaml"
        path.write_text(CONTENT_YAML)

        import_content_file(path)
        import_content_file(path)

        assert content.count_published_lessons("contract-formation") == 1

    def test_missing_file(self, db_path, tmp_path):
        """A missing file is a validation error."""
        with pytest.raises(ValidationError, match="not found"):
            import_content_file(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, db_path, tmp_path):
        """Broken YAML is a validation error."""
        path = tmp_path / "broken.yaml"
        path.write_text("subjects: [unclosed")

        with pytest.raises(ValidationError, match="Invalid YAML"):
            import_content_file(path)


class TestImportContent:
    """Tests for import_content."""

    def test_missing_required_field(self, db_path):
        """Lessons need a title."""
        data = {
            "subjects": [
                {
                    "id": "equity",
                    "name": "Equity",
                    "modules": [{"id": "trusts", "name": "Trusts", "lessons": [{"id": "l1"}]}],
                }
            ]
        }

        with pytest.raises(ValidationError, match="title"):
            import_content(data)

    def test_empty_document(self, db_path):
        """An empty document imports nothing."""
        assert import_content({}).to_dict() == {
            "subjects": 0,
            "modules": 0,
            "lessons": 0,
            "essay_questions": 0,
        }
