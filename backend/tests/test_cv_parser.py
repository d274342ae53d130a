"""
CV解析测试
"""
import io
import docx
import pytest
from unittest.mock import AsyncMock, Mock
from cvplus.services.cv_parser import CVParser, compute_content_hash, normalize_date


class TestTextExtraction:
    """文件文本提取测试"""

    def test_extract_txt(self):
        parser = CVParser(llm_service=Mock())
        assert parser.extract_text("Jane Smith\nEngineer".encode("utf-8"), "txt") == "Jane Smith\nEngineer"

    def test_extract_csv(self):
        parser = CVParser(llm_service=Mock())
        text = parser.extract_text(b"name,title\nJane Smith, Engineer\n", "csv")
        assert text.splitlines() == ["name, title", "Jane Smith, Engineer"]

    def test_extract_docx_with_table(self):
        """测试Word文件（包含表格）"""
        document = docx.Document()
        document.add_paragraph("Jane Smith")
        table = document.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "Acme Cloud"
        table.rows[0].cells[1].text = "Senior Software Engineer"
        buffer = io.BytesIO()
        document.save(buffer)

        parser = CVParser(llm_service=Mock())
        text = parser.extract_text(buffer.getvalue(), "docx")
        assert "Jane Smith" in text
        assert "Acme Cloud | Senior Software Engineer" in text

    def test_unsupported_type(self):
        parser = CVParser(llm_service=Mock())
        with pytest.raises(ValueError):
            parser.extract_text(b"data", "rtf")

    def test_empty_text(self):
        parser = CVParser(llm_service=Mock())
        with pytest.raises(ValueError):
            parser.extract_text(b"   \n  ", "txt")

    def test_broken_pdf(self):
        parser = CVParser(llm_service=Mock())
        with pytest.raises(ValueError):
            parser.extract_text(b"not a pdf", "pdf")


class TestPreprocessing:
    """文本预处理测试"""

    def test_collapses_whitespace(self):
        parser = CVParser(llm_service=Mock())
        assert parser.preprocess_text("Jane   Smith\n\n\n  Engineer  ") == "Jane Smith\nEngineer"

    def test_truncates_at_line_boundary(self):
        parser = CVParser(llm_service=Mock())
        text = "\n".join(["x" * 9] * 20)
        result = parser.preprocess_text(text, max_length=95)
        assert len(result) <= 95
        assert result.endswith("x")

    def test_content_hash_ignores_case_and_spacing(self):
        assert compute_content_hash("Jane  Smith\nEngineer") == compute_content_hash("jane smith engineer")


class TestDateNormalization:
    """日期格式统一测试"""

    @pytest.mark.parametrize("value,expected", [
        ("2020-3", "2020-03"),
        ("2020/11", "2020-11"),
        ("03/2019", "2019-03"),
        ("March 2018", "2018-03"),
        ("2016", "2016-01"),
        ("Present", ""),
        ("", ""),
        ("Spring term", "Spring term"),
    ])
    def test_normalize_date(self, value, expected):
        assert normalize_date(value) == expected


class TestStructuredParsing:
    """LLM结构化解析测试"""

    @pytest.mark.asyncio
    async def test_parse_cv_text_normalizes_output(self):
        llm = Mock()
        llm.complete_json = AsyncMock(return_value={
            "personal_info": {"name": " Jane Smith ", "email": "jane@example.com"},
            "experience": [
                {"company": "Startly", "title": "Developer", "start_date": "2017/01", "end_date": "2020/02"},
                {"company": "Acme Cloud", "position": "Senior Engineer", "start_date": "2020-03",
                 "end_date": "Present", "employment_type": "Full_Time"},
                "not a dict",
            ],
            "education": [{"school": "TU Berlin", "major": "Computer Science", "graduation_date": "2016"}],
            "skills": ["Python", "Go", ""],
        })
        parser = CVParser(llm_service=llm)

        result = await parser.parse_cv_text("Jane Smith\nSenior Engineer at Acme Cloud")

        llm.complete_json.assert_awaited_once()
        assert result["personal_info"]["name"] == "Jane Smith"
        assert result["personal_info"]["phone"] == ""
        assert [e["company"] for e in result["experience"]] == ["Acme Cloud", "Startly"]
        current = result["experience"][0]
        assert current["is_current"] is True
        assert current["end_date"] == ""
        assert current["employment_type"] == "full_time"
        assert result["experience"][1]["position"] == "Developer"
        assert result["education"][0]["institution"] == "TU Berlin"
        assert result["education"][0]["end_date"] == "2016-01"
        assert result["skills"]["technical"] == ["Python", "Go"]
        assert result["projects"] == []
