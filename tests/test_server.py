"""
HTTP contract tests for the FastAPI app.

The pdf2htmlEX container and Chromium are replaced with fakes; the app is used
without its lifespan so no background sweeps or browsers are started.
"""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import server
from pdft_backend.conversion import DocumentConverter
from pdft_backend.errors import ExternalToolFailure
from pdft_backend.renderer import BrowserPool, PdfRenderer
from pdft_backend.security import new_conversion_id
from tests.fakes import CONVERTED_HTML, FakeConverterTool, FakeLauncher

PDF_UPLOAD = ("report.pdf", b"%PDF-1.4\n%%EOF\n", "application/pdf")


@pytest.fixture
def client() -> TestClient:
    return TestClient(server.app)


@pytest.fixture
def fake_tool(monkeypatch: pytest.MonkeyPatch) -> FakeConverterTool:
    tool = FakeConverterTool(output_name="{stem}.html")
    monkeypatch.setattr(server, "converter", DocumentConverter(server.UPLOADS_DIR, server.catalog, tool))
    return tool


@pytest.fixture
def fake_launcher(monkeypatch: pytest.MonkeyPatch) -> FakeLauncher:
    launcher = FakeLauncher(content_size=(1400, 2600))
    renderer = PdfRenderer(BrowserPool(size=1, launcher=launcher), server.PDF_OUTPUT_DIR, settle_ms=0, resettle_ms=0)
    monkeypatch.setattr(server, "renderer", renderer)
    return launcher


class TestHealth:
    def test_health_reports_status_and_timestamp(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["timestamp"].endswith("Z")


class TestConvert:
    def test_convert_returns_result_and_serves_assets(self, client: TestClient, fake_tool: FakeConverterTool):
        response = client.post("/convert", files={"file": PDF_UPLOAD}, data={"splitPages": "true", "zoom": "1.5"})

        assert response.status_code == 200
        data = response.json()
        cid = data["conversionId"]
        assert data["originalFilename"] == "report.pdf"
        assert data["assetCount"] == 4
        assert isinstance(data["processingTimeMs"], int)
        assert f'<base href="http://testserver/c/{cid}/">' in data["markup"]

        options = fake_tool.calls[0][3]
        assert options.split_pages is True
        assert options.zoom == 1.5
        assert options.embed_fonts is None

        # The upload itself does not outlive the request.
        assert not fake_tool.calls[0][0].exists()

        asset = client.get(f"/c/{cid}/assets/base.min.css")
        assert asset.status_code == 200
        assert asset.headers["content-type"].startswith("text/css")
        assert asset.headers["cache-control"] == "public, max-age=3600"

        catalog_entry = client.get(f"/api/conversions/{cid}/assets")
        assert catalog_entry.status_code == 200
        assert {a["filename"] for a in catalog_entry.json()["assets"]} == {
            "base.min.css",
            "pdf2htmlEX.min.js",
            "f1.woff",
            "bg1.png",
        }

    def test_embed_flags_are_parsed_from_form(self, client: TestClient, fake_tool: FakeConverterTool):
        data = {"embedFonts": "false", "embedJavascript": "false", "embedImages": "true"}
        response = client.post("/convert", files={"file": PDF_UPLOAD}, data=data)

        assert response.status_code == 200
        options = fake_tool.calls[0][3]
        assert options.embed_fonts is False
        assert options.embed_scripts is False
        assert options.embed_images is True

    def test_conversion_failure_returns_structured_error(self, client: TestClient, fake_tool: FakeConverterTool):
        fake_tool.error = ExternalToolFailure("PDF conversion failed: corrupt xref table")

        response = client.post("/convert", files={"file": PDF_UPLOAD})

        assert response.status_code == 500
        assert response.json() == {
            "error": "PDF conversion failed",
            "details": "PDF conversion failed: corrupt xref table",
        }
        assert not fake_tool.calls[0][0].exists()

    def test_missing_file_is_rejected(self, client: TestClient):
        assert client.post("/convert", data={"zoom": "1"}).status_code == 400

    def test_non_pdf_is_rejected(self, client: TestClient, fake_tool: FakeConverterTool):
        response = client.post("/convert", files={"file": ("notes.txt", b"hello", "text/plain")})
        assert response.status_code == 400
        assert fake_tool.calls == []

    def test_bad_zoom_is_rejected(self, client: TestClient, fake_tool: FakeConverterTool):
        response = client.post("/convert", files={"file": PDF_UPLOAD}, data={"zoom": "-2"})
        assert response.status_code == 400

    def test_oversized_upload_is_rejected(self, client: TestClient, fake_tool: FakeConverterTool, monkeypatch):
        monkeypatch.setattr(server, "MAX_UPLOAD_BYTES", 4)
        response = client.post("/convert", files={"file": PDF_UPLOAD})
        assert response.status_code == 413
        assert fake_tool.calls == []


class TestAssets:
    @pytest.mark.parametrize("filename", ["..secret.css", "a\\b.css", "x..y.png"])
    def test_traversal_is_a_client_error(self, client: TestClient, filename: str):
        response = client.get(f"/c/{new_conversion_id()}/assets/{filename}")
        assert response.status_code == 400

    def test_unknown_asset_is_404(self, client: TestClient):
        assert client.get(f"/c/{new_conversion_id()}/assets/f9.woff").status_code == 404

    def test_invalid_conversion_id_is_404(self, client: TestClient):
        assert client.get("/c/not-a-conversion/assets/f1.woff").status_code == 404
        assert client.get("/api/conversions/not-a-conversion/assets").status_code == 404

    def test_unknown_extension_is_served_as_binary(self, client: TestClient):
        cid = new_conversion_id()
        work_dir = server.catalog.work_dir_for(cid)
        work_dir.mkdir(parents=True)
        (work_dir / "outline.bin").write_bytes(b"\x00\x01")

        response = client.get(f"/c/{cid}/assets/outline.bin")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/octet-stream"
        assert response.content == b"\x00\x01"


class TestGeneratePdf:
    def test_converted_markup_renders_natively(self, client: TestClient, fake_launcher: FakeLauncher):
        response = client.post("/generate-pdf", json={"html": CONVERTED_HTML, "options": {"filename": "edited.pdf"}})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["filename"].startswith("edited-")
        assert data["downloadUrl"] == f"http://testserver/download-pdf/{data['filename']}"
        assert data["fileSize"] > 0

        pdf_kwargs = fake_launcher.launched[0].pages[0].pdf_kwargs
        assert (pdf_kwargs["width"], pdf_kwargs["height"], pdf_kwargs["scale"]) == ("1400px", "2600px", 1)

        download = client.get(data["downloadUrl"].replace("http://testserver", ""))
        assert download.status_code == 200
        assert download.headers["content-type"] == "application/pdf"
        assert "attachment" in download.headers["content-disposition"]
        assert data["filename"] in download.headers["content-disposition"]
        assert download.headers["cache-control"] == "no-cache"
        assert download.content.startswith(b"%PDF")

    def test_plain_markup_uses_paper_format(self, client: TestClient, fake_launcher: FakeLauncher):
        payload = {"html": "<h1>Hello</h1>", "options": {"format": "letter", "orientation": "landscape"}}
        response = client.post("/generate-pdf", json=payload)

        assert response.status_code == 200
        pdf_kwargs = fake_launcher.launched[0].pages[0].pdf_kwargs
        assert pdf_kwargs["format"] == "Letter"
        assert pdf_kwargs["landscape"] is True
        assert pdf_kwargs["scale"] == 0.75

    def test_explicit_render_mode_overrides_sniffing(self, client: TestClient, fake_launcher: FakeLauncher):
        payload = {"html": CONVERTED_HTML, "options": {"renderMode": "paper"}}
        assert client.post("/generate-pdf", json=payload).status_code == 200
        assert fake_launcher.launched[0].pages[0].pdf_kwargs["format"] == "A4"

    def test_missing_html_is_rejected(self, client: TestClient, fake_launcher: FakeLauncher):
        response = client.post("/generate-pdf", json={"html": ""})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_bad_options_are_rejected(self, client: TestClient, fake_launcher: FakeLauncher):
        response = client.post("/generate-pdf", json={"html": "<p>x</p>", "options": {"format": "B9"}})
        assert response.status_code == 400

    def test_render_failure_returns_error_payload(self, client: TestClient, monkeypatch):
        launcher = FakeLauncher(pdf_error=RuntimeError("Printing failed"))
        renderer = PdfRenderer(BrowserPool(size=1, launcher=launcher), server.PDF_OUTPUT_DIR, settle_ms=0)
        monkeypatch.setattr(server, "renderer", renderer)

        response = client.post("/generate-pdf", json={"html": "<p>x</p>"})

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert "Printing failed" in data["error"]


class TestDownload:
    def test_reclaimed_file_is_404(self, client: TestClient):
        assert client.get("/download-pdf/document-1-deadbeef.pdf").status_code == 404

    @pytest.mark.parametrize("filename", ["..evil.pdf", "a\\b.pdf", "report.html"])
    def test_invalid_names_are_rejected(self, client: TestClient, filename: str):
        assert client.get(f"/download-pdf/{filename}").status_code == 400

    def test_existing_file_is_streamed(self, client: TestClient):
        path = Path(server.PDF_OUTPUT_DIR) / "manual-1-abc.pdf"
        path.write_bytes(b"%PDF-1.7 test")

        response = client.get("/download-pdf/manual-1-abc.pdf")

        assert response.status_code == 200
        assert response.content == b"%PDF-1.7 test"
