import pytest

from convenio.documents import RENDERERS, TITLES, DocumentKind, render_document
from convenio.errors import ValidationError


class TestRenderDocument:
    @pytest.mark.parametrize("kind", list(DocumentKind))
    def test_every_kind_renders(self, kind):
        html = render_document(kind.value, {"patientName": "Maria", "professionalName": "Dra. Ana"})
        assert html.startswith("<!DOCTYPE html>")
        assert TITLES[kind] in html
        assert "Maria" in html
        assert "Dra. Ana" in html

    def test_dispatch_is_exhaustive(self):
        assert set(RENDERERS) == set(DocumentKind)

    def test_unknown_kind(self):
        with pytest.raises(ValidationError) as exc:
            render_document("passport", {})
        assert exc.value.detail == {"document_type": "passport"}

    def test_fields_are_escaped(self):
        html = render_document("other", {"patientName": "<script>x</script>", "content": "a & b"})
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "a &amp; b" in html

    def test_certificate_fields(self):
        html = render_document(
            DocumentKind.CERTIFICATE, {"days": 3, "cid": "M54.5", "crm": "CRM 1234", "patientCpf": "12345678901"}
        )
        assert "3 dia(s)" in html
        assert "M54.5" in html
        assert "Registro: CRM 1234" in html
        assert "CPF: 12345678901" in html

    def test_custom_title(self):
        html = render_document("declaration", {"title": "Declaração Especial"})
        assert "<title>Declaração Especial</title>" in html
