"""
Resource Helper Tests

Covers document sniffing, the blob registry, Cloudinary URL handling,
bounded downloads, the proxy URL policy and the error taxonomy.
"""

import asyncio

import httpx
import pytest

from StudyShelf.ResourceAcquisition.blobs import BlobStore, decode_data_url, is_local_reference
from StudyShelf.ResourceAcquisition.classifier import (
    DocumentFormat,
    format_from_url,
    is_compatible_content_type,
    sniff_document,
)
from StudyShelf.ResourceAcquisition.cloudinary import (
    cloudinary_download_url,
    is_cloudinary_raw_url,
    parse_cloudinary_url,
)
from StudyShelf.ResourceAcquisition.errors import (
    AuthError,
    ErrorKind,
    HttpStatusError,
    InvalidArgumentError,
    NetworkError,
    StrategyTimeoutError,
    UnexpectedStrategyError,
    UnsupportedFormatError,
    classify_exception,
    error_for_status,
    get_actionable_error_message,
)
from StudyShelf.ResourceAcquisition.http import check_declared_length, read_bounded
from StudyShelf.ResourceAcquisition.urls import check_upstream_url

RAW_URL = "https://res.cloudinary.com/demo/raw/upload/v1746122082/bookstore/bookFiles/abc123.pdf"


class TestSniffDocument:
    """Test byte and header based classification."""

    def test_pdf_magic(self, pdf_bytes):
        """Test that the PDF signature wins over a misleading header."""
        assert sniff_document(pdf_bytes, "text/plain") is DocumentFormat.PDF

    def test_epub_container(self, epub_bytes):
        """Test the EPUB zip container signature."""
        assert sniff_document(epub_bytes) is DocumentFormat.EPUB

    def test_plain_zip_is_unknown(self):
        """Test that an arbitrary zip is not taken for an EPUB."""
        assert sniff_document(b"PK\x03\x04" + b"\x00" * 100) is DocumentFormat.UNKNOWN

    def test_html_error_page(self):
        """Test that HTML is detected even when labelled as PDF."""
        assert sniff_document(b"  <!DOCTYPE html><html>", "application/pdf") is DocumentFormat.HTML

    def test_header_then_url(self):
        """Test fallback to the header and then to the URL suffix."""
        assert sniff_document(b"\x00\x01", "application/epub+zip") is DocumentFormat.EPUB
        assert sniff_document(b"\x00\x01", None, "https://x.org/book.pdf?dl=1") is DocumentFormat.PDF

    def test_format_from_url(self):
        """Test URL suffix guessing."""
        assert format_from_url("https://x.org/a/B.EPUB") is DocumentFormat.EPUB
        assert format_from_url("https://x.org/a/b") is DocumentFormat.UNKNOWN

    def test_from_wire(self):
        """Test lenient format parsing."""
        assert DocumentFormat.from_wire("PDF") is DocumentFormat.PDF
        assert DocumentFormat.from_wire("mobi") is DocumentFormat.UNKNOWN
        assert DocumentFormat.PDF.mime_type == "application/pdf"


class TestContentTypeCompatibility:
    """Test is_compatible_content_type."""

    @pytest.mark.parametrize("ctype", [None, "", "application/octet-stream", "binary/octet-stream"])
    def test_generic_types_accepted(self, ctype):
        """Test that unlabelled payloads are left for sniffing."""
        assert is_compatible_content_type(ctype, DocumentFormat.PDF)

    def test_mismatch(self):
        """Test that a different document type is rejected."""
        assert not is_compatible_content_type("application/pdf", DocumentFormat.EPUB)
        assert not is_compatible_content_type("text/html; charset=utf-8", DocumentFormat.PDF)

    def test_unknown_expectation(self):
        """Test that an unknown expectation accepts either document type."""
        assert is_compatible_content_type("application/epub+zip", DocumentFormat.UNKNOWN)
        assert not is_compatible_content_type("text/html", DocumentFormat.UNKNOWN)

    def test_zip_for_epub(self):
        """Test that application/zip is acceptable for EPUB."""
        assert is_compatible_content_type("application/zip", DocumentFormat.EPUB)


class TestBlobStore:
    """Test the blob registry."""

    def test_register_get_revoke(self, pdf_bytes):
        """Test the lifecycle of a blob reference."""
        store = BlobStore()
        url = store.register(pdf_bytes, "application/pdf")

        assert url.startswith("blob:studyshelf/")
        assert url in store
        assert store.get(url).size == len(pdf_bytes)
        assert store.revoke(url)
        assert not store.revoke(url)
        assert store.get(url) is None

    def test_revoke_all(self):
        """Test releasing every reference at once."""
        store = BlobStore(namespace="test")
        store.register(b"a", "application/pdf")
        store.register(b"b", "application/pdf")
        assert len(store) == 2
        assert store.revoke_all() == 2
        assert len(store) == 0

    def test_local_reference(self):
        """Test local reference detection."""
        assert is_local_reference("blob:studyshelf/1")
        assert is_local_reference("data:application/pdf;base64,JVBERi0=")
        assert not is_local_reference("https://x.org/a.pdf")


class TestDecodeDataUrl:
    """Test data: URL decoding."""

    def test_base64(self):
        """Test a base64 payload."""
        mime, data = decode_data_url("data:application/pdf;base64,JVBERi0xLjc=")
        assert mime == "application/pdf"
        assert data == b"%PDF-1.7"

    def test_percent_encoded(self):
        """Test a percent-encoded payload with the default MIME type."""
        assert decode_data_url("data:,Hello%20World") == ("text/plain", b"Hello World")

    def test_invalid(self):
        """Test malformed data URLs."""
        with pytest.raises(ValueError):
            decode_data_url("https://x.org")
        with pytest.raises(ValueError, match="Invalid base64"):
            decode_data_url("data:application/pdf;base64,@@@")


class TestCloudinary:
    """Test Cloudinary URL helpers."""

    def test_parse(self):
        """Test splitting a raw upload URL."""
        asset = parse_cloudinary_url(RAW_URL)
        assert asset.cloud_name == "demo"
        assert asset.resource_type == "raw"
        assert asset.version == "1746122082"
        assert asset.public_id == "bookstore/bookFiles/abc123"

    def test_download_url(self):
        """Test rebuilding the canonical download URL."""
        url = "https://res.cloudinary.com/demo/raw/upload/v12/books/intro"
        assert cloudinary_download_url(url) == "https://res.cloudinary.com/demo/raw/upload/v12/books/intro.pdf"

    def test_non_cloudinary(self):
        """Test that other hosts are not Cloudinary assets."""
        assert parse_cloudinary_url("https://example.org/demo/raw/upload/v1/a.pdf") is None
        assert not is_cloudinary_raw_url("https://example.org/a.pdf")
        with pytest.raises(ValueError):
            cloudinary_download_url("https://example.org/a.pdf")

    def test_image_uploads_are_not_raw(self):
        """Test that image assets are not eligible for the raw download URL."""
        url = "https://res.cloudinary.com/demo/image/upload/v1/covers/a.jpg"
        assert parse_cloudinary_url(url).resource_type == "image"
        assert not is_cloudinary_raw_url(url)

    def test_malformed(self):
        """Test URLs missing the upload path."""
        assert parse_cloudinary_url("https://res.cloudinary.com/demo/raw/upload/") is None
        assert parse_cloudinary_url("https://res.cloudinary.com/demo") is None


class TestErrorTaxonomy:
    """Test error construction and classification."""

    def test_error_for_status(self):
        """Test status mapping and retryability."""
        assert isinstance(error_for_status(401), AuthError)
        assert isinstance(error_for_status(403), AuthError)
        assert not error_for_status(404).retryable
        assert error_for_status(503).retryable
        assert error_for_status(429).reason == "http_status_429"

    def test_classify_httpx_errors(self):
        """Test classification of httpx exceptions."""
        request = httpx.Request("GET", "https://x.org/a.pdf")
        assert isinstance(classify_exception(httpx.ConnectError("refused", request=request)), NetworkError)
        assert isinstance(
            classify_exception(httpx.ReadTimeout("slow", request=request)), StrategyTimeoutError
        )
        status_error = httpx.HTTPStatusError(
            "bad", request=request, response=httpx.Response(502, request=request)
        )
        classified = classify_exception(status_error)
        assert isinstance(classified, HttpStatusError)
        assert classified.status == 502

    def test_classify_asyncio_timeout(self):
        """Test that asyncio timeouts become StrategyTimeoutError."""
        assert classify_exception(asyncio.TimeoutError()).kind is ErrorKind.TIMEOUT

    def test_classify_keeps_taxonomy_errors(self):
        """Test that typed errors pass through with the URL filled in."""
        error = AuthError("denied")
        assert classify_exception(error, url="https://x.org") is error
        assert error.url == "https://x.org"

    def test_unexpected(self):
        """Test the catch-all category."""
        assert isinstance(classify_exception(KeyError("x")), UnexpectedStrategyError)

    def test_to_dict(self):
        """Test error serialisation."""
        data = HttpStatusError("gone", status=410, url="https://x.org").to_dict()
        assert data["kind"] == "http_status"
        assert data["status"] == 410
        assert data["retryable"] is False

    def test_actionable_messages(self):
        """Test user-facing messages per kind."""
        assert "connection" in get_actionable_error_message(NetworkError("x"))
        assert get_actionable_error_message(None)

    def test_kind_from_wire(self):
        """Test parsing error kinds."""
        assert ErrorKind.from_wire("HTTP_STATUS") is ErrorKind.HTTP_STATUS
        with pytest.raises(ValueError):
            ErrorKind.from_wire("gremlins")


BOOK_URL = "https://cdn.example.org/books/intro.pdf"


def _read(make_client, handler, max_bytes):
    client, _ = make_client({("GET", BOOK_URL): handler})

    async def _go():
        async with client.stream("GET", BOOK_URL) as response:
            return await read_bounded(response, max_bytes, url=BOOK_URL)

    return asyncio.run(_go())


class TestBoundedReads:
    """Test size-capped reading of streamed bodies."""

    def test_within_limit(self, make_client, pdf_bytes):
        """Test that a body under the limit is read whole."""
        data = _read(make_client, lambda r: httpx.Response(200, content=pdf_bytes), 1024)
        assert data == pdf_bytes

    def test_declared_length_refused(self):
        """Test that Content-Length alone is enough to refuse a body."""
        response = httpx.Response(200, headers={"Content-Length": str(10**9)})
        with pytest.raises(UnsupportedFormatError) as excinfo:
            check_declared_length(response, 1024, url=BOOK_URL)
        assert excinfo.value.actual == f"{10**9} bytes"

    def test_declared_length_within_limit(self):
        """Test that a small or missing Content-Length passes."""
        check_declared_length(httpx.Response(200, headers={"Content-Length": "12"}), 1024)
        check_declared_length(httpx.Response(200), 1024)

    def test_undeclared_body_stops_early(self, make_client, streaming_handler):
        """Test that reading stops at the first chunk past the limit."""
        handler, pulled = streaming_handler(chunks=50, size=4096)
        with pytest.raises(UnsupportedFormatError, match="exceeds 1024 bytes"):
            _read(make_client, handler, 1024)
        assert pulled == [4096]


class TestUpstreamUrl:
    """Test the host and address policy of the document proxy."""

    def test_allow_list_subdomains(self):
        """Test that an entry admits itself and its subdomains only."""
        allowed = ["cloudinary.com"]
        assert check_upstream_url(RAW_URL, allowed) == RAW_URL
        assert check_upstream_url("https://cloudinary.com/a.pdf", allowed)
        with pytest.raises(InvalidArgumentError):
            check_upstream_url("https://evilcloudinary.com/a.pdf", allowed)

    def test_empty_allow_list_admits_public_hosts(self):
        """Test that no allow-list admits any public host."""
        assert check_upstream_url(BOOK_URL) == BOOK_URL

    @pytest.mark.parametrize(
        "url",
        [
            "http://169.254.169.254/latest/meta-data/",
            "http://127.0.0.1:8000/",
            "http://10.1.2.3/doc.pdf",
            "http://192.168.0.10/doc.pdf",
            "http://[::1]/doc.pdf",
            "http://[::ffff:127.0.0.1]/doc.pdf",
            "http://0.0.0.0/",
            "http://localhost:5000/",
            "http://api.localhost/",
        ],
    )
    def test_internal_addresses(self, url):
        """Test that internal targets are refused even without an allow-list."""
        with pytest.raises(InvalidArgumentError, match="internal address"):
            check_upstream_url(url)

    def test_internal_address_refused_when_listed(self):
        """Test that listing an internal address does not admit it."""
        with pytest.raises(InvalidArgumentError, match="internal address"):
            check_upstream_url("http://127.0.0.1/doc.pdf", ["127.0.0.1"])

    @pytest.mark.parametrize(
        "url",
        ["file:///etc/passwd", "ftp://cdn.example.org/a.pdf", "https://user:pw@cdn.example.org/a.pdf", "https:///a.pdf"],
    )
    def test_malformed_targets(self, url):
        """Test that other schemes, credentials and host-less URLs are refused."""
        with pytest.raises(InvalidArgumentError):
            check_upstream_url(url)
