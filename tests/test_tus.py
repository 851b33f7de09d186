"""Tests for the tus protocol endpoints."""

import pytest
from starlette.requests import Request

from filedrop.errors import InvalidRequest
from filedrop.tus import OFFSET_CONTENT_TYPE, encode_metadata, parse_int_header, parse_metadata

PAYLOAD = b"0123456789"


def creation_headers(transfer_id, length=10, **extra):
    headers = {
        "Tus-Resumable": "1.0.0",
        "Upload-Length": str(length),
        "Upload-Metadata": encode_metadata(
            {"transferId": transfer_id, "filename": "report.pdf", "filetype": "application/pdf"}
        ),
    }
    headers.update(extra)
    return headers


def patch_headers(offset):
    return {"Tus-Resumable": "1.0.0", "Upload-Offset": str(offset), "Content-Type": OFFSET_CONTENT_TYPE}


@pytest.fixture
def upload_path(client, api_transfer):
    response = client.post("/api/tus", headers=creation_headers(api_transfer["id"]))
    assert response.status_code == 201
    return "/api/tus/" + response.headers["Location"].rsplit("/", 1)[1]


class TestMetadataHeader:
    def test_parse(self):
        header = "transferId dDE=,filename bXkgZmlsZS50eHQ=,is_confidential"
        assert parse_metadata(header) == {"transferId": "t1", "filename": "my file.txt", "is_confidential": ""}

    def test_invalid_base64_is_kept(self):
        assert parse_metadata("transferId not*base64") == {"transferId": "not*base64"}

    def test_empty(self):
        assert parse_metadata(None) == {}
        assert parse_metadata("") == {}


def request_with(name, value):
    return Request({"type": "http", "headers": [(name.encode("latin-1"), value.encode("latin-1"))]})


class TestIntegerHeader:
    def test_parse(self):
        assert parse_int_header(request_with("upload-offset", " 42 "), "upload-offset") == 42

    def test_missing(self):
        assert parse_int_header(request_with("content-length", "3"), "upload-offset", required=False) is None
        with pytest.raises(InvalidRequest):
            parse_int_header(request_with("content-length", "3"), "upload-offset")

    @pytest.mark.parametrize("value", ["-1", "1.5", "abc", "", "\u00b2", "\u00b9"])
    def test_rejects_non_decimal_values(self, value):
        with pytest.raises(InvalidRequest):
            parse_int_header(request_with("upload-offset", value), "upload-offset")


class TestDiscovery:
    def test_options(self, client):
        response = client.options("/api/tus")

        assert response.status_code == 204
        assert response.headers["Tus-Version"] == "1.0.0"
        assert response.headers["Tus-Extension"] == "creation,creation-with-upload,termination"
        assert response.headers["Tus-Max-Size"] == "1024"

    def test_cors_preflight(self, client):
        response = client.options(
            "/api/tus/abc",
            headers={
                "Origin": "https://app.example",
                "Access-Control-Request-Method": "PATCH",
                "Access-Control-Request-Headers": "upload-offset,tus-resumable,content-type",
            },
        )

        assert response.status_code == 200
        assert "PATCH" in response.headers["Access-Control-Allow-Methods"]

    def test_cors_exposes_offset_headers(self, client, upload_path):
        response = client.head(upload_path, headers={"Origin": "https://app.example"})

        exposed = response.headers["Access-Control-Expose-Headers"]
        assert "Upload-Offset" in exposed
        assert "Upload-Length" in exposed
        assert "Location" in exposed


class TestCreate:
    def test_create(self, client, api_transfer):
        response = client.post("/api/tus", headers=creation_headers(api_transfer["id"]))

        assert response.status_code == 201
        assert response.headers["Location"].startswith("http://files.test/api/tus/")
        assert response.headers["Upload-Offset"] == "0"
        assert response.headers["Tus-Resumable"] == "1.0.0"

    def test_create_with_upload(self, client, api_transfer):
        response = client.post(
            "/api/tus",
            headers=creation_headers(api_transfer["id"], **{"Content-Type": OFFSET_CONTENT_TYPE}),
            content=PAYLOAD[:4],
        )

        assert response.status_code == 201
        assert response.headers["Upload-Offset"] == "4"

    def test_create_with_upload_requires_offset_content_type(self, client, api_transfer):
        response = client.post(
            "/api/tus",
            headers=creation_headers(api_transfer["id"], **{"Content-Type": "text/plain"}),
            content=PAYLOAD[:4],
        )

        assert response.status_code == 415

    def test_missing_upload_length(self, client, api_transfer):
        headers = creation_headers(api_transfer["id"])
        del headers["Upload-Length"]

        response = client.post("/api/tus", headers=headers)

        assert response.status_code == 400

    def test_declared_size_over_maximum(self, client, api_transfer):
        response = client.post("/api/tus", headers=creation_headers(api_transfer["id"], length=2048))

        assert response.status_code == 413
        assert "Location" not in response.headers
        assert client.app.state.registry.get(api_transfer["id"]).files == {}

    def test_unknown_transfer(self, client):
        response = client.post("/api/tus", headers=creation_headers("f" * 32))

        assert response.status_code == 404

    def test_missing_transfer_id(self, client):
        response = client.post("/api/tus", headers={"Tus-Resumable": "1.0.0", "Upload-Length": "10"})

        assert response.status_code == 400

    def test_unsupported_version(self, client, api_transfer):
        response = client.post(
            "/api/tus", headers=creation_headers(api_transfer["id"], **{"Tus-Resumable": "0.2.2"})
        )

        assert response.status_code == 412
        assert response.headers["Tus-Version"] == "1.0.0"


class TestAppend:
    def test_upload_in_two_chunks(self, client, api_transfer, upload_path):
        first = client.patch(upload_path, headers=patch_headers(0), content=PAYLOAD[:6])
        assert first.status_code == 204
        assert first.headers["Upload-Offset"] == "6"

        second = client.patch(upload_path, headers=patch_headers(6), content=PAYLOAD[6:])
        assert second.status_code == 204
        assert second.headers["Upload-Offset"] == "10"

        transfer = client.get(f"/api/transfers/{api_transfer['id']}").json()
        assert transfer["file_count"] == 1
        assert transfer["files"][0]["size"] == 10
        assert transfer["files"][0]["original_name"] == "report.pdf"

    def test_offset_mismatch_reports_current_offset(self, client, upload_path):
        client.patch(upload_path, headers=patch_headers(0), content=PAYLOAD[:6])

        response = client.patch(upload_path, headers=patch_headers(3), content=PAYLOAD[3:])

        assert response.status_code == 409
        assert response.headers["Upload-Offset"] == "6"

    def test_append_to_complete_upload(self, client, upload_path):
        client.patch(upload_path, headers=patch_headers(0), content=PAYLOAD)

        response = client.patch(upload_path, headers=patch_headers(10), content=b"x")

        assert response.status_code == 409

    def test_chunk_past_declared_length(self, client, upload_path):
        response = client.patch(upload_path, headers=patch_headers(0), content=PAYLOAD + b"extra")

        assert response.status_code == 413
        assert client.head(upload_path).headers["Upload-Offset"] == "0"

    def test_wrong_content_type(self, client, upload_path):
        headers = patch_headers(0)
        headers["Content-Type"] = "application/octet-stream"

        response = client.patch(upload_path, headers=headers, content=PAYLOAD)

        assert response.status_code == 415

    def test_superscript_offset_is_a_bad_request(self, client, upload_path):
        headers = patch_headers(0)
        headers["Upload-Offset"] = "\u00b2".encode("latin-1")

        response = client.patch(upload_path, headers=headers, content=PAYLOAD)

        assert response.status_code == 400
        assert client.head(upload_path).headers["Upload-Offset"] == "0"

    def test_missing_offset(self, client, upload_path):
        headers = patch_headers(0)
        del headers["Upload-Offset"]

        response = client.patch(upload_path, headers=headers, content=PAYLOAD)

        assert response.status_code == 400

    def test_unknown_upload(self, client):
        response = client.patch("/api/tus/" + "0" * 32, headers=patch_headers(0), content=PAYLOAD)

        assert response.status_code == 404

    def test_storage_desync_is_a_server_error(self, client, upload_path):
        session_id = upload_path.rsplit("/", 1)[1]
        client.app.state.blobs.path(session_id).write_bytes(b"stray")

        response = client.patch(upload_path, headers=patch_headers(0), content=PAYLOAD)

        assert response.status_code == 500
        assert response.headers["Tus-Resumable"] == "1.0.0"


class TestStatusAndCancel:
    def test_head(self, client, upload_path):
        client.patch(upload_path, headers=patch_headers(0), content=PAYLOAD[:3])

        response = client.head(upload_path, headers={"Tus-Resumable": "1.0.0"})

        assert response.status_code == 200
        assert response.headers["Upload-Offset"] == "3"
        assert response.headers["Upload-Length"] == "10"
        assert response.headers["Cache-Control"] == "no-store"
        assert parse_metadata(response.headers["Upload-Metadata"])["filename"] == "report.pdf"

    def test_head_unknown(self, client):
        response = client.head("/api/tus/" + "0" * 32)

        assert response.status_code == 404

    def test_delete(self, client, api_transfer, upload_path):
        response = client.delete(upload_path, headers={"Tus-Resumable": "1.0.0"})

        assert response.status_code == 204
        assert client.head(upload_path).status_code == 404
        assert client.app.state.registry.get(api_transfer["id"]).files == {}

    def test_delete_twice(self, client, upload_path):
        assert client.delete(upload_path).status_code == 204
        assert client.delete(upload_path).status_code == 204
        assert client.delete("/api/tus/" + "0" * 32).status_code == 204

    def test_delete_complete_upload(self, client, upload_path):
        client.patch(upload_path, headers=patch_headers(0), content=PAYLOAD)

        response = client.delete(upload_path)

        assert response.status_code == 204
        status = client.head(upload_path)
        assert status.status_code == 200
        assert status.headers["Upload-Offset"] == str(len(PAYLOAD))
