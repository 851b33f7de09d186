"""Resumable upload client for a filedrop server.

    python upload_client.py big.iso --title "Holiday footage"

Creates a transfer, uploads each file with tus, resumes from the server's
offset after any failed chunk and finally completes the transfer.
"""

import argparse
import base64
import mimetypes
import os
import time
from typing import Dict, Optional

import requests

TUS_VERSION = "1.0.0"
CHUNK_SIZE = 8 * 1024 * 1024  # 8MB chunks
MAX_RETRIES = 5


def encode_metadata(metadata: Dict[str, str]) -> str:
    return ",".join(
        f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}" for key, value in metadata.items()
    )


class UploadClient:
    def __init__(self, base_url: str, token: Optional[str] = None, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.http = session or requests.Session()
        self.http.headers["Tus-Resumable"] = TUS_VERSION
        if token:
            self.http.headers["Authorization"] = f"Bearer {token}"

    def create_transfer(self, title: Optional[str] = None, expires_in_days: Optional[int] = None) -> dict:
        response = self.http.post(
            f"{self.base_url}/api/transfers",
            json={"title": title, "expires_in_days": expires_in_days},
        )
        response.raise_for_status()
        return response.json()

    def complete_transfer(self, transfer_id: str) -> dict:
        response = self.http.post(f"{self.base_url}/api/transfers/{transfer_id}/complete")
        response.raise_for_status()
        return response.json()

    def create_upload(self, transfer_id: str, filename: str, size: int) -> str:
        filetype = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        response = self.http.post(
            f"{self.base_url}/api/tus",
            headers={
                "Upload-Length": str(size),
                "Upload-Metadata": encode_metadata(
                    {"transferId": transfer_id, "filename": os.path.basename(filename), "filetype": filetype}
                ),
            },
        )
        response.raise_for_status()
        return response.headers["Location"]

    def get_offset(self, location: str) -> int:
        response = self.http.head(location)
        response.raise_for_status()
        return int(response.headers["Upload-Offset"])

    def send_chunk(self, location: str, offset: int, data: bytes) -> int:
        response = self.http.patch(
            location,
            headers={"Upload-Offset": str(offset), "Content-Type": "application/offset+octet-stream"},
            data=data,
        )
        if response.status_code == 409 and "Upload-Offset" in response.headers:
            return int(response.headers["Upload-Offset"])
        response.raise_for_status()
        return int(response.headers["Upload-Offset"])

    def upload_file(self, location: str, path: str, chunk_size: int = CHUNK_SIZE) -> int:
        size = os.path.getsize(path)
        offset = self.get_offset(location)
        retries = 0
        with open(path, "rb") as f:
            while offset < size:
                f.seek(offset)
                data = f.read(chunk_size)
                try:
                    offset = self.send_chunk(location, offset, data)
                    retries = 0
                except requests.exceptions.RequestException as e:
                    retries += 1
                    if retries > MAX_RETRIES:
                        raise
                    print(f"Chunk at {offset} failed ({e}), resuming")
                    time.sleep(min(2**retries, 30))
                    offset = self.get_offset(location)
                print(f"{os.path.basename(path)}: {offset}/{size} bytes")
        return offset


def main():
    parser = argparse.ArgumentParser(description="Upload files to a filedrop server")
    parser.add_argument("files", nargs="+")
    parser.add_argument("--url", default="http://localhost:8000")
    parser.add_argument("--title")
    parser.add_argument("--expires-in-days", type=int)
    parser.add_argument("--token")
    parser.add_argument("--chunk-size", type=int, default=CHUNK_SIZE)
    args = parser.parse_args()

    client = UploadClient(args.url, token=args.token)
    transfer = client.create_transfer(args.title, args.expires_in_days)
    print(f"Created transfer {transfer['id']}")

    for path in args.files:
        location = client.create_upload(transfer["id"], path, os.path.getsize(path))
        client.upload_file(location, path, args.chunk_size)

    result = client.complete_transfer(transfer["id"])
    print(f"Uploaded {result['file_count']} files ({result['total_size']} bytes)")
    print(f"Download link: {result['download_url']}")


if __name__ == "__main__":
    main()
